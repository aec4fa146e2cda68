"""Clinical photography domain: records, repository and HTTP routes."""
