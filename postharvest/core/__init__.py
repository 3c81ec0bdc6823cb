"""Building blocks of the search pipeline (ids, discovery, extraction, pool, storage)."""
