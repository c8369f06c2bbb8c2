"""Service layer modules for bookhub."""
