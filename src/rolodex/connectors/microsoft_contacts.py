"""Microsoft 365 contacts connector (Graph ``contacts/delta``).

Cursor shape: ``{"contactsDeltaLink": "<url>"}``.
"""

from __future__ import annotations

from typing import Any

from rolodex.connectors._normalize import as_non_empty_string, lower_email
from rolodex.connectors.base import NormalizedPerson, SyncRequest, SyncResult
from rolodex.connectors.cursor import collect_with_full_resync
from rolodex.connectors.microsoft_graph import GRAPH_BASE_URL, MicrosoftGraphConnector

CURSOR_KEY = "contactsDeltaLink"
CONTACTS_DELTA_URL = (
    f"{GRAPH_BASE_URL}/me/contacts/delta"
    "?$select=id,givenName,surname,displayName,companyName,jobTitle,emailAddresses,"
    "businessPhones,mobilePhone,homeAddress,businessAddress&$top=100"
)
_ADDRESS_PARTS = ("street", "city", "state", "postalCode", "countryOrRegion")


class MicrosoftContactsConnector(MicrosoftGraphConnector):
    """Imports the Microsoft 365 address book as people."""

    @property
    def id(self) -> str:
        return "microsoft-contacts"

    @property
    def name(self) -> str:
        return "Microsoft Contacts"

    @property
    def description(self) -> str:
        return "Import contacts from Microsoft 365."

    async def sync(self, request: SyncRequest) -> SyncResult:
        access_token = await self.resolve_access_token(request)

        async def collect(cursor: dict[str, Any]) -> SyncResult:
            people: list[NormalizedPerson] = []

            def handle(contact: dict[str, Any]) -> bool:
                person = contact_to_person(contact)
                if person is None:
                    return False
                people.append(person)
                return True

            next_cursor, has_more = await self._collect_delta(
                access_token,
                cursor,
                cursor_key=CURSOR_KEY,
                initial_url=CONTACTS_DELTA_URL,
                handle_item=handle,
            )
            return SyncResult(people=people, cursor=next_cursor, has_more=has_more)

        return await collect_with_full_resync(
            collect,
            request.cursor,
            provider=self.name,
            cursor_key=CURSOR_KEY,
        )


def format_address(address: Any) -> str | None:
    if not isinstance(address, dict):
        return None
    parts = [as_non_empty_string(address.get(key)) for key in _ADDRESS_PARTS]
    joined = ", ".join(part for part in parts if part)
    return joined or None


def contact_to_person(contact: dict[str, Any]) -> NormalizedPerson | None:
    """Map one Graph contact; removed and unidentifiable entries yield ``None``."""
    if "@removed" in contact:
        return None

    email = None
    addresses = contact.get("emailAddresses")
    if isinstance(addresses, list) and addresses and isinstance(addresses[0], dict):
        email = lower_email(addresses[0].get("address"))
    display_name = as_non_empty_string(contact.get("displayName"))
    given_name = as_non_empty_string(contact.get("givenName"))
    if email is None and display_name is None and given_name is None:
        return None

    business_phones = contact.get("businessPhones")
    first_business_phone = (
        business_phones[0] if isinstance(business_phones, list) and business_phones else None
    )
    return NormalizedPerson(
        email=email,
        phone=as_non_empty_string(contact.get("mobilePhone"))
        or as_non_empty_string(first_business_phone),
        first_name=given_name,
        last_name=as_non_empty_string(contact.get("surname")),
        display_name=display_name,
        company_name=as_non_empty_string(contact.get("companyName")),
        job_title=as_non_empty_string(contact.get("jobTitle")),
        location=format_address(contact.get("businessAddress"))
        or format_address(contact.get("homeAddress")),
        source="microsoft-contacts",
        source_id=as_non_empty_string(contact.get("id")),
    )
