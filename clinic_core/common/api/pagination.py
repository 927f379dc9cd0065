# clinic_core/common/api/pagination.py
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class DefaultPagination(PageNumberPagination):
    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 100


def paginate(request, queryset, serializer_class, *, paginator: PageNumberPagination | None = None, context=None) -> Response:
    """
    Page a scoped queryset with the envelope every list endpoint returns:
      { count, next, previous, results }

    The queryset must already be ordered; queue listings rely on serve order
    surviving the page boundary.
    """
    pager = paginator or DefaultPagination()
    ctx = {"request": request, **(context or {})}

    page = pager.paginate_queryset(queryset, request)
    if page is None:
        return Response(serializer_class(queryset, many=True, context=ctx).data)

    return pager.get_paginated_response(serializer_class(page, many=True, context=ctx).data)
