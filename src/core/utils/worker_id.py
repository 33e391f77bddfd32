"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID.

    Args:
        prefix: Optional prefix (e.g., "ingest-event-ingester")

    Returns:
        "prefix-word1-word2-word3", or "word1-word2-word3" without a prefix
    """
    slug = generate_slug(3)
    return f"{prefix}-{slug}" if prefix else slug
