import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..tracking.errors import RemoteQueryError
from ..tracking.models import SourceMemberRecord

logger = logging.getLogger(__name__)

SOURCE_MEMBER_FIELDS = "MemberType, MemberName, RevisionCounter, IsNameObsolete"


class OrgClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.instance_url.rstrip("/")
        self.query_url = self._get_query_url()

    @property
    def session(self) -> requests.Session:
        """Accessor for the current thread's session."""
        return self._get_session()

    def _get_query_url(self) -> str:
        return (
            f"{self.base_url}/services/data/v{self.config.api_version}"
            "/tooling/query"
        )

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.access_token}",
                "Accept": "application/json",
            }
        )
        session.verify = not self.config.insecure
        return session

    def _get_json(self, url: str, params: dict | None = None) -> Any:
        """
        GET *url* and decode the JSON body.

        Raises:
            RemoteQueryError: On transport errors, non-2xx responses or
                undecodable bodies.
        """
        try:
            response = self._get_session().get(
                url, params=params, timeout=(10, 60)
            )
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise RemoteQueryError(
                f"Remote query failed ({status}): {e}", status_code=status
            ) from e
        except requests.RequestException as e:
            raise RemoteQueryError(f"Remote query failed: {e}") from e
        except ValueError as e:
            raise RemoteQueryError(
                f"Remote returned an undecodable response: {e}"
            ) from e

    def query(self, soql: str) -> list[dict[str, Any]]:
        """
        Run a tooling query and return every record, following pagination.
        """
        logger.debug("Remote query: %s", soql)
        data = self._get_json(self.query_url, params={"q": soql})
        records = list(data.get("records", []))
        while not data.get("done", True) and data.get("nextRecordsUrl"):
            data = self._get_json(f"{self.base_url}{data['nextRecordsUrl']}")
            records.extend(data.get("records", []))
        return records

    def query_source_members(
        self,
        from_revision: int | None = None,
        to_revision: int | None = None,
    ) -> list[SourceMemberRecord]:
        """
        Query remote change records, optionally bounded by revision.

        Args:
            from_revision: Only records with RevisionCounter > from_revision.
            to_revision: Only records with RevisionCounter <= to_revision.
        """
        clauses = []
        if from_revision is not None:
            clauses.append(f"RevisionCounter > {int(from_revision)}")
        if to_revision is not None:
            clauses.append(f"RevisionCounter <= {int(to_revision)}")
        soql = f"SELECT {SOURCE_MEMBER_FIELDS} FROM SourceMember"
        if clauses:
            soql += " WHERE " + " AND ".join(clauses)
        try:
            return [
                SourceMemberRecord.model_validate(record)
                for record in self.query(soql)
            ]
        except ValueError as e:
            raise RemoteQueryError(
                f"Unexpected change record shape: {e}"
            ) from e

    def validate_connection(self) -> str:
        """
        Validate the connection by listing the remote's API versions.
        Returns the newest version string.
        """
        versions = self._get_json(f"{self.base_url}/services/data/")
        if not versions:
            return ""
        return str(versions[-1].get("version", ""))
