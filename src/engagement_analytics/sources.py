"""Upstream source clients: helpdesk search, CRM and the usage feeds."""
import asyncio
from pathlib import Path
from typing import Any

import aiohttp

from .csv_loader import load_snapshot_feed, load_usage_events
from .identity import primary_email
from .logger import log
from .models import (
    CrmSnapshot,
    RawCrmOrganisation,
    RawCrmPerson,
    RawDeal,
    RawTicketRecord,
    RawUsageEvent,
)
from .recency import parse_timestamp

# Jira Service Management custom fields
REQUEST_TYPE_FIELD = "customfield_10010"
SATISFACTION_FIELD = "customfield_10033"
JOB_TITLE_FIELD = "customfield_10061"
ORGANISATION_FIELD = "customfield_10063"

TICKET_FIELDS = [
    "reporter", "created", "resolutiondate", "resolution", "updated",
    REQUEST_TYPE_FIELD, SATISFACTION_FIELD, JOB_TITLE_FIELD, ORGANISATION_FIELD,
]

# Pipedrive deal custom field holding the licence count
LICENSE_COUNT_FIELD = "a950076a1d0d2f2fe9ed27f42a8c13bf7c5dedc4"


class SourceFetchError(Exception):
    """Raised when an upstream source cannot be read."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class HttpClient:
    """JSON GET helper with retry and timeout handling."""

    def __init__(self, source: str, max_retries: int = 3, timeout: float = 30.0):
        self.source = source
        self.max_retries = max_retries
        self.timeout = timeout

    async def get_json(
        self,
        url: str,
        params: dict | None = None,
        auth: aiohttp.BasicAuth | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ) -> Any:
        """GET ``url`` and decode the JSON body.

        Timeouts, connection errors, 5xx and 429 responses are retried with
        exponential backoff; any other 4xx fails straight away.
        """
        for attempt in range(self.max_retries):
            try:
                if semaphore:
                    async with semaphore:
                        return await asyncio.wait_for(
                            self._request(url, params, auth), timeout=self.timeout
                        )
                return await asyncio.wait_for(
                    self._request(url, params, auth), timeout=self.timeout
                )

            except aiohttp.ClientResponseError as e:
                # client errors other than rate limiting will not change on retry
                if e.status < 500 and e.status != 429:
                    raise SourceFetchError(self.source, f"GET {url} returned {e.status}") from e
                if attempt < self.max_retries - 1:
                    log.debug(f"{self.source} request returned {e.status}, retrying")
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise SourceFetchError(self.source, f"GET {url} returned {e.status}") from e

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < self.max_retries - 1:
                    log.debug(f"{self.source} request failed ({e!r}), retrying")
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise SourceFetchError(self.source, f"GET {url} failed: {e!r}") from e

        raise SourceFetchError(self.source, "no attempts made")

    @staticmethod
    async def _request(url: str, params: dict | None, auth: aiohttp.BasicAuth | None) -> Any:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                url,
                params=params,
                auth=auth,
                headers={"Accept": "application/json"},
            ) as response:
                response.raise_for_status()
                return await response.json()


# ---------------------------------------------------------------------------
# Helpdesk
# ---------------------------------------------------------------------------

def _text_value(value: Any) -> str | None:
    """Flatten the shapes Jira uses for text-ish custom fields."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        return _text_value(value.get("name") or value.get("value"))
    if isinstance(value, list):
        for item in value:
            text = _text_value(item)
            if text:
                return text
    return None


def _rating(value: Any) -> int | None:
    if isinstance(value, dict):
        value = value.get("rating")
    try:
        rating = int(value)
    except (TypeError, ValueError):
        return None
    return rating if 1 <= rating <= 5 else None


def ticket_from_issue(issue: dict) -> RawTicketRecord:
    """Convert a Jira search result issue into a ticket record."""
    fields = issue.get("fields") or {}
    reporter = fields.get("reporter") or {}

    resolved_at = parse_timestamp(fields.get("resolutiondate"))
    if resolved_at is None and fields.get("resolution"):
        resolved_at = parse_timestamp(fields.get("updated")) or parse_timestamp(fields.get("created"))

    request_type = (fields.get(REQUEST_TYPE_FIELD) or {}).get("requestType") or {}

    return RawTicketRecord(
        key=issue.get("key", ""),
        reporter_email=reporter.get("emailAddress"),
        reporter_name=reporter.get("displayName"),
        organisation=_text_value(fields.get(ORGANISATION_FIELD)),
        job_title=_text_value(fields.get(JOB_TITLE_FIELD)),
        created_at=parse_timestamp(fields.get("created")),
        resolved_at=resolved_at,
        request_type=_text_value(request_type.get("name")),
        satisfaction=_rating(fields.get(SATISFACTION_FIELD)),
    )


class JiraTicketSource:
    """Jira Service Management issue search."""

    name = "tickets"
    page_size = 100

    def __init__(self, domain: str, email: str, api_token: str, client: HttpClient | None = None):
        if not (domain and email and api_token):
            raise ValueError("JIRA_DOMAIN, JIRA_EMAIL and JIRA_API_TOKEN are required")
        self.base_url = f"https://{domain}/rest/api/3"
        self.auth = aiohttp.BasicAuth(email, api_token)
        self.client = client or HttpClient("jira")

    async def search(self, jql: str, max_results: int = 200, fields: list[str] | None = None) -> dict:
        """Search issues; returns ``{"success", "issues"[, "error"]}``."""
        issues: list[dict] = []
        start_at = 0
        try:
            while len(issues) < max_results:
                page = await self.client.get_json(
                    f"{self.base_url}/search",
                    params={
                        "jql": jql,
                        "startAt": start_at,
                        "maxResults": min(self.page_size, max_results - len(issues)),
                        "fields": ",".join(fields or TICKET_FIELDS),
                    },
                    auth=self.auth,
                )
                batch = page.get("issues") or []
                issues.extend(batch)
                start_at += len(batch)
                if not batch or start_at >= page.get("total", 0):
                    break
        except SourceFetchError as e:
            return {"success": False, "issues": [], "error": str(e)}

        return {"success": True, "issues": issues[:max_results]}

    async def fetch_tickets(self, jql: str, max_results: int = 200) -> list[RawTicketRecord]:
        response = await self.search(jql, max_results=max_results, fields=TICKET_FIELDS)
        if not response["success"]:
            raise SourceFetchError(self.name, response.get("error", "search failed"))
        return [ticket_from_issue(issue) for issue in response["issues"]]


# ---------------------------------------------------------------------------
# CRM
# ---------------------------------------------------------------------------

def _ref_id(value: Any) -> int | None:
    """Pipedrive returns linked ids either bare or as ``{"value": id, ...}``."""
    if isinstance(value, dict):
        value = value.get("value") or value.get("id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def person_from_payload(payload: dict) -> RawCrmPerson:
    org = payload.get("org_id")
    org_name = payload.get("org_name")
    if not org_name and isinstance(org, dict):
        org_name = org.get("name")

    emails = payload.get("email") or payload.get("primary_email") or []
    if isinstance(emails, str):
        emails = [emails]
    values = [e.get("value") if isinstance(e, dict) else e for e in emails]

    return RawCrmPerson(
        id=payload["id"],
        name=payload.get("name"),
        emails=[v for v in values if isinstance(v, str) and v.strip()],
        org_id=_ref_id(org),
        org_name=org_name or None,
        job_title=payload.get("job_title") or None,
        customer_type=payload.get("customer_type") or None,
    )


def deal_from_payload(payload: dict, stage_names: dict[int, str] | None = None) -> RawDeal:
    person = payload.get("person_id")
    person_email = primary_email(person.get("email")) if isinstance(person, dict) else None

    stage = payload.get("stage_id")
    if isinstance(stage, dict):
        stage_name = stage.get("name")
    else:
        stage_name = (stage_names or {}).get(_ref_id(stage))

    license_raw = payload.get(LICENSE_COUNT_FIELD)
    return RawDeal(
        id=payload["id"],
        person_id=_ref_id(person),
        person_email=person_email,
        title=payload.get("title"),
        value=float(payload.get("value") or 0),
        status=payload.get("status") or "open",
        stage_name=stage_name,
        add_time=parse_timestamp(payload.get("add_time")),
        license_count=str(license_raw) if license_raw not in (None, "") else None,
    )


class PipedriveCrmSource:
    """Pipedrive persons, organisations and deals."""

    name = "crm"
    page_size = 500

    def __init__(self, api_key: str, domain: str = "landiq", client: HttpClient | None = None):
        if not api_key:
            raise ValueError("PIPEDRIVE_API_KEY is required")
        self.base_url = f"https://{domain}.pipedrive.com/api/v1"
        self.api_key = api_key
        self.client = client or HttpClient("pipedrive")

    async def _fetch_all(self, endpoint: str) -> list[dict]:
        items: list[dict] = []
        start = 0
        while True:
            page = await self.client.get_json(
                f"{self.base_url}/{endpoint}",
                params={"api_token": self.api_key, "start": start, "limit": self.page_size},
            )
            if not page.get("success", True):
                raise SourceFetchError(self.name, f"/{endpoint}: {page.get('error')}")
            items.extend(page.get("data") or [])
            pagination = (page.get("additional_data") or {}).get("pagination") or {}
            if not pagination.get("more_items_in_collection"):
                return items
            start = pagination.get("next_start", start + self.page_size)

    async def fetch_persons(self) -> list[dict]:
        return await self._fetch_all("persons")

    async def fetch_organisations(self) -> list[dict]:
        return await self._fetch_all("organizations")

    async def fetch_deals(self) -> list[dict]:
        return await self._fetch_all("deals")

    async def fetch_stages(self) -> list[dict]:
        return await self._fetch_all("stages")

    async def fetch_snapshot(self) -> CrmSnapshot:
        persons, organisations, deals, stages = await asyncio.gather(
            self.fetch_persons(),
            self.fetch_organisations(),
            self.fetch_deals(),
            self.fetch_stages(),
        )
        stage_names = {s["id"]: s.get("name") for s in stages if "id" in s}
        return CrmSnapshot(
            persons=[person_from_payload(p) for p in persons if "id" in p],
            organisations=[
                RawCrmOrganisation(id=o["id"], name=o["name"])
                for o in organisations if o.get("id") and o.get("name")
            ],
            deals=[deal_from_payload(d, stage_names) for d in deals if "id" in d],
        )


# ---------------------------------------------------------------------------
# Usage feeds
# ---------------------------------------------------------------------------

class CsvUsageSource:
    """Event feed plus an optional wide snapshot feed, read from disk."""

    name = "usage"

    def __init__(
        self,
        events_path: Path | None,
        surface: str = "product",
        snapshot_path: Path | None = None,
        snapshot_surface: str = "snapshot",
    ):
        self.events_path = events_path
        self.surface = surface
        self.snapshot_path = snapshot_path
        self.snapshot_surface = snapshot_surface

    def _load(self) -> list[RawUsageEvent]:
        events: list[RawUsageEvent] = []
        for path in (self.events_path, self.snapshot_path):
            if path is not None and not Path(path).exists():
                raise SourceFetchError(self.name, f"{path} not found")
        if self.events_path is not None:
            events.extend(load_usage_events(self.events_path, surface=self.surface))
        if self.snapshot_path is not None:
            events.extend(load_snapshot_feed(self.snapshot_path, surface=self.snapshot_surface))
        return events

    async def fetch_events(self) -> list[RawUsageEvent]:
        return await asyncio.to_thread(self._load)

