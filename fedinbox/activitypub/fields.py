"""
fedinbox/activitypub/fields.py

Acesso uniforme a campos de objetos ActivityStreams.

Um mesmo objeto pode chegar como modelo do apkit (atributos em snake_case,
ex: `note.in_reply_to`) ou como dict JSON-LD obtido por fetch remoto
(chaves em camelCase, ex: `"inReplyTo"`). Referências podem ser uma URL,
um objeto embutido ou uma lista. Os helpers abaixo escondem essas variações.
"""

from datetime import datetime, timezone
from urllib.parse import urlparse


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def field(obj, name: str, default=None):
    """Lê `name` de um modelo apkit ou de um dict JSON-LD."""
    if obj is None or isinstance(obj, str):
        return default
    if isinstance(obj, dict):
        value = obj.get(name)
        if value is None:
            value = obj.get(_camel(name))
        return default if value is None else value
    value = getattr(obj, name, None)
    if value is None and "_" in name:
        value = getattr(obj, _camel(name), None)
    return default if value is None else value


def kind_of(obj) -> str:
    """Tipo ActivityStreams do objeto ("Follow", "Note", ...)."""
    if obj is None or isinstance(obj, str):
        return ""
    kind = field(obj, "type")
    if isinstance(kind, list):
        kind = kind[0] if kind else None
    if isinstance(kind, str) and kind:
        return kind
    return type(obj).__name__


def id_of(ref) -> str:
    """URL/id de uma referência: string, objeto embutido ou lista."""
    if ref is None:
        return ""
    if isinstance(ref, str):
        return ref
    if isinstance(ref, (list, tuple)):
        return id_of(ref[0]) if ref else ""
    value = field(ref, "id") or field(ref, "href")
    return str(value) if value else ""


def href_of(ref) -> str:
    """Como `id_of`, mas prefere `href`/`url`. Usado em Link, Image e Mention."""
    if ref is None:
        return ""
    if isinstance(ref, str):
        return ref
    if isinstance(ref, (list, tuple)):
        return href_of(ref[0]) if ref else ""
    value = field(ref, "href")
    if value:
        return str(value)
    url = field(ref, "url")
    if url:
        return href_of(url)
    return id_of(ref)


def text_of(obj, name: str) -> str:
    value = field(obj, name)
    if value is None:
        return ""
    if isinstance(value, dict):
        # Mapas de idioma (contentMap/nameMap): usa o primeiro valor
        value = next(iter(value.values()), "")
    return str(value)


def as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def is_embedded(ref) -> bool:
    """True quando a referência já traz o objeto, não apenas a URL."""
    if ref is None or isinstance(ref, str):
        return False
    if isinstance(ref, dict):
        return set(ref) - {"id", "@context"} != set()
    return True


def parse_datetime(value) -> datetime | None:
    """Converte `published`/`updated` para datetime UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def hostname_of(url: str) -> str:
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""
