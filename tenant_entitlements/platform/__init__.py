"""Platform-wide concerns shared with the rest of the product."""
