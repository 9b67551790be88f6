"""ClinicFlow - Pagination"""


def paginate_query(query, page: int, page_size: int):
    """Apply pagination range to a Supabase query."""
    offset = (page - 1) * page_size
    return query.range(offset, offset + page_size - 1)


def page_count(total: int, page_size: int) -> int:
    return -(-total // page_size) if total else 0
