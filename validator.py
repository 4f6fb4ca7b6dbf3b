from typing import Optional


def cross_validate(
    primary: Optional[int], secondary: Optional[int], max_diff: int
) -> tuple[Optional[int], Optional[int]]:
    """
    Drop the secondary popularity rank when it strays too far from the primary.

    Ranks from different platforms share no identifier, so a large gap points
    at a mismatched title rather than a real disagreement.
    """
    if primary is None or secondary is None:
        return primary, secondary
    if abs(primary - secondary) > max_diff:
        return primary, None
    return primary, secondary
