from __future__ import annotations

import logging
from typing import Iterable, Optional
import requests


logger = logging.getLogger(__name__)


class SourceError(RuntimeError):
    """Raised when the open-data API answers with a non-2xx status or an unusable body."""


def soql_quote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def soql_in(field: str, values: Iterable[str]) -> str:
    return f"{field} in ({','.join(soql_quote(v) for v in values)})"


class SocrataClient:
    """
    Thin client for the Socrata SODA 2.1 resource API (data.lacity.org).

    Every call returns a list of flat dict records. Paging is left to the
    caller so that stages can bound a single invocation.
    """

    def __init__(
        self,
        base_url: str,
        app_token: str | None = None,
        timeout: int = 60,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.s = session or requests.Session()
        if app_token:
            self.s.headers["X-App-Token"] = app_token

    def fetch(
        self,
        dataset: str,
        *,
        where: str | None = None,
        order: str | None = None,
        limit: int = 1000,
        offset: int = 0,
        select: Iterable[str] | None = None,
    ) -> list[dict]:
        params = {"$limit": limit, "$offset": offset}
        if where:
            params["$where"] = where
        if order:
            params["$order"] = order
        if select:
            params["$select"] = ",".join(select)

        r = self.s.get(f"{self.base_url}/{dataset}.json", params=params, timeout=self.timeout)
        if not r.ok:
            raise SourceError(f"{dataset} API error: {r.status_code}")

        try:
            data = r.json()
        except ValueError as e:
            raise SourceError(f"{dataset} API returned invalid JSON: {e}") from e

        if not isinstance(data, list):
            raise SourceError(f"{dataset} API returned {type(data).__name__}, expected a list")

        logger.debug("%s offset=%s limit=%s -> %d rows", dataset, offset, limit, len(data))
        return data

    def fetch_all(self, dataset: str, *, page_size: int = 1000, max_pages: int | None = None, **kw) -> list[dict]:
        out: list[dict] = []
        page = 0
        while max_pages is None or page < max_pages:
            rows = self.fetch(dataset, limit=page_size, offset=page * page_size, **kw)
            out.extend(rows)
            if len(rows) < page_size:
                break
            page += 1
        return out
