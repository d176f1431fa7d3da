from __future__ import annotations

from typing import Any, Dict, Generator


def paginate_aws(
    client: Any,
    operation_name: str,
    result_key: str,
    **kwargs: Any,
) -> Generator[Dict[str, Any], None, None]:
    """
    Yield items of result_key across all pages of a boto3 operation.

    The client's own paginator knows the token names of each operation
    (NextToken for EC2/Organizations, Marker for RDS/DocDB, Marker/NextMarker
    for ELBv2), so callers only name the operation and the list key.
    """
    paginator = client.get_paginator(operation_name)
    for page in paginator.paginate(**kwargs):
        for item in (page or {}).get(result_key) or []:
            yield item
