def conversation_key(alias_a: str, alias_b: str, listing_id: str) -> str:
    """
    Stable grouping key for a pair of aliases talking about one listing.

    The pair is sorted first, so key(a, b, L) == key(b, a, L) no matter who
    initiated contact.
    """
    low, high = sorted((alias_a, alias_b))
    return f"{low}_{high}_{listing_id}"
