from django.core.paginator import EmptyPage, Paginator

from core.exceptions import ValidationError

MAX_PAGE_SIZE = 100


def paginate(queryset, page=1, limit=50, max_limit=MAX_PAGE_SIZE):
    """
    Slice ``queryset`` and return ``(items, pagination)``.
    A page past the end yields an empty list rather than an error.
    """
    try:
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), max_limit)
    except (TypeError, ValueError):
        raise ValidationError('page and limit must be integers')

    paginator = Paginator(queryset, limit)
    try:
        items = list(paginator.page(page))
    except EmptyPage:
        items = []

    return items, {
        'page': page,
        'limit': limit,
        'total': paginator.count,
        'total_pages': paginator.num_pages if paginator.count else 0,
    }
