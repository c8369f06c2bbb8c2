"""bookhub: book lookups aggregated from several providers behind tiered caches."""

__version__ = "0.1.0"
