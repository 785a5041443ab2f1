"""
AIMS article construction

An article is the flat AIMS-side record shown on a label:
    {articleId, articleName, nfc, data1..data5}
Each entity type has a fixed mapping onto that shape.
"""

from typing import Any, Dict, Optional

from shelfsync.core.exceptions import ArticleBuildError
from shelfsync.core.models import ConferenceRoom, Person, Space

# Source keys accepted as custom label fields, in application order.
# Explicit dataN keys come last so they win over the legacy fieldN aliases.
CUSTOM_FIELD_SOURCES = (
    ('field1', 'data1'), ('field2', 'data2'), ('field3', 'data3'), ('field4', 'data4'), ('field5', 'data5'),
    ('data1', 'data1'), ('data2', 'data2'), ('data3', 'data3'), ('data4', 'data4'), ('data5', 'data5'),
)


def _coalesce(*values: Any) -> Any:
    """First value that is not None"""
    for value in values:
        if value is not None:
            return value
    return None


def extract_custom_fields(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Map fieldN/dataN entity keys onto AIMS data1..data5 slots"""
    fields: Dict[str, str] = {}
    for source, slot in CUSTOM_FIELD_SOURCES:
        value = (data or {}).get(source)
        if value is not None:
            fields[slot] = str(value)
    return fields


def build_space_article(space: Space) -> Dict[str, Any]:
    if not space.external_id:
        raise ArticleBuildError(f"Space {space.id} has no external id")

    data = space.data or {}
    return {
        'articleId': space.external_id,
        'articleName': _coalesce(data.get('name'), space.external_id),
        'nfc': _coalesce(data.get('nfcData'), ''),
        **extract_custom_fields(data),
    }


def build_person_article(person: Person) -> Dict[str, Any]:
    data = person.data or {}
    return {
        'articleId': _coalesce(person.external_id, person.virtual_space_id, person.id),
        'articleName': _coalesce(data.get('name'), 'Person'),
        'nfc': _coalesce(data.get('nfcData'), ''),
        **extract_custom_fields(data),
    }


def build_conference_article(room: ConferenceRoom) -> Dict[str, Any]:
    if not room.external_id:
        raise ArticleBuildError(f"Conference room {room.id} has no external id")

    return {
        'articleId': room.external_id,
        'articleName': room.room_name,
        'nfc': '',
        'data1': 'MEETING' if room.has_meeting else 'AVAILABLE',
        'data2': room.meeting_name or '',
        'data3': room.start_time or '',
        'data4': room.end_time or '',
        'data5': ', '.join(room.participants or []),
    }
