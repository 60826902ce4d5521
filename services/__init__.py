"""Service layer: deck documents, merging, sharing, AI, tokens and payments."""
