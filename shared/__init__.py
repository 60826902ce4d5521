"""Cross-cutting helpers shared by routes and services."""
