"""
fedinbox/activitypub/extract.py

Normalização de objetos remotos (Note, Article, ...) para o formato dos
itens da timeline. Toda escrita na timeline passa por `extract_object_data`.

- HTML sanitizado com BeautifulSoup contra uma allow-list de tags/atributos
- Tags separadas em hashtags (`category`) e menções (`mentions`)
- Anexos classificados em photo/video/audio pelo media type
- Metadados de boost (`boosted_by`/`boosted_at`) quando informados
"""

import re
from datetime import datetime
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Comment

from fedinbox.activitypub.fields import (
    as_list,
    field,
    href_of,
    hostname_of,
    id_of,
    kind_of,
    parse_datetime,
    text_of,
)
from fedinbox.database import utcnow

ALLOWED_TAGS = {
    "p", "br", "a", "strong", "em", "ul", "ol", "li",
    "blockquote", "code", "pre", "h1", "h2", "h3", "h4", "h5", "h6",
    "span", "div", "img",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href", "rel", "class"},
    "img": {"src", "alt", "class"},
    "span": {"class"},
    "div": {"class"},
}
ALLOWED_SCHEMES = {"http", "https", "mailto"}
ALLOWED_IMG_SCHEMES = {"http", "https", "data"}

# Removidas com o conteúdo; as demais tags fora da allow-list só perdem a marcação
DROPPED_TAGS = ["script", "style", "iframe", "object", "embed", "noscript", "textarea", "template"]

CONTENT_TYPES = ("Note", "Article", "Question", "Page")
ACTIVITY_TYPES = (
    "Accept", "Add", "Announce", "Block", "Create", "Delete", "Follow",
    "Like", "Move", "Reject", "Remove", "Undo", "Update",
)

_AT_USER_PATH = re.compile(r"/@([^/]+)")
_USERS_PATH = re.compile(r"/users/([^/]+)")


def _scheme_allowed(tag_name: str, value: str) -> bool:
    scheme = urlparse(value.strip()).scheme.lower()
    if not scheme:
        return True
    allowed = ALLOWED_IMG_SCHEMES if tag_name == "img" else ALLOWED_SCHEMES
    return scheme in allowed


def sanitize_content(html: str) -> str:
    """Remove marcação não permitida, mantendo o texto."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(DROPPED_TAGS):
        tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue
        allowed = ALLOWED_ATTRIBUTES.get(tag.name, set())
        for attr in list(tag.attrs):
            if attr not in allowed:
                del tag.attrs[attr]
        for attr in ("href", "src"):
            if attr in tag.attrs and not _scheme_allowed(tag.name, tag[attr]):
                del tag.attrs[attr]

    return str(soup)


def html_to_text(html: str) -> str:
    if not html:
        return ""
    return " ".join(BeautifulSoup(html, "html.parser").get_text(separator=" ").split())


def strip_html(value: str) -> str:
    """Remove qualquer HTML: nomes de actors não podem carregar marcação."""
    if not value or "<" not in value:
        return value or ""
    return BeautifulSoup(value, "html.parser").get_text().strip()


def extract_actor_info(actor) -> dict:
    """{name, url, photo, handle} de um actor remoto (modelo apkit ou dict)."""
    if actor is None:
        return {"name": "Unknown", "url": "", "photo": "", "handle": ""}
    if isinstance(actor, str):
        return actor_info_from_url(actor)

    url = id_of(actor)
    username = text_of(actor, "preferred_username")
    name = strip_html(text_of(actor, "name")) or username or "Unknown"
    host = hostname_of(url)
    return {
        "name": name,
        "url": url,
        "photo": href_of(field(actor, "icon")),
        "handle": f"@{username}@{host}" if username and host else "",
    }


def actor_info_from_url(url: str) -> dict:
    """Último recurso quando o actor não pôde ser buscado: deduz da URL."""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    match = _AT_USER_PATH.search(parsed.path) or _USERS_PATH.search(parsed.path)
    username = match.group(1) if match else ""
    return {
        "name": username or host or "Unknown",
        "url": url,
        "photo": "",
        "handle": f"@{username}@{host}" if username and host else "",
    }


def has_renderable_content(obj) -> bool:
    """False para ids de atividade soltos ou objetos sem texto nem mídia."""
    if obj is None or isinstance(obj, str):
        return False
    if kind_of(obj) in ACTIVITY_TYPES:
        return False
    return bool(
        text_of(obj, "content").strip()
        or text_of(obj, "content_map").strip()
        or text_of(obj, "name").strip()
        or as_list(field(obj, "attachment"))
    )


def is_content_object(obj) -> bool:
    return kind_of(obj) in CONTENT_TYPES


def _split_tags(obj) -> tuple[list[str], list[dict]]:
    category, mentions = [], []
    for tag in as_list(field(obj, "tag")):
        kind = kind_of(tag)
        name = text_of(tag, "name").strip()
        if not name:
            continue
        if kind == "Mention" or name.startswith("@"):
            stripped = name.lstrip("@")
            if all(m["name"] != stripped for m in mentions):
                mentions.append({"name": stripped, "url": href_of(tag)})
        elif kind == "Hashtag" or name.startswith("#"):
            tag_name = name.lstrip("#")
            if tag_name and tag_name not in category:
                category.append(tag_name)
    return category, mentions


def _split_attachments(obj) -> dict[str, list[str]]:
    media = {"photo": [], "video": [], "audio": []}
    for attachment in as_list(field(obj, "attachment")):
        url = href_of(field(attachment, "url")) or id_of(attachment)
        if not url:
            continue
        media_type = text_of(attachment, "media_type").lower()
        kind = kind_of(attachment)
        if media_type.startswith("image/") or kind == "Image":
            media["photo"].append(url)
        elif media_type.startswith("video/") or kind == "Video":
            media["video"].append(url)
        elif media_type.startswith("audio/") or kind == "Audio":
            media["audio"].append(url)
    return media


def extract_content(obj) -> dict:
    """Campos que um Update remoto pode alterar: content, name, summary, sensitive."""
    content_html = text_of(obj, "content") or text_of(obj, "content_map")
    source_text = text_of(field(obj, "source"), "content")
    html = sanitize_content(content_html)
    return {
        "content": {
            "text": source_text or html_to_text(html),
            "html": html,
        },
        "name": text_of(obj, "name") if kind_of(obj) == "Article" else "",
        "summary": text_of(obj, "summary"),
        "sensitive": bool(field(obj, "sensitive", False)),
    }


def extract_object_data(
        obj,
        *,
        author=None,
        boosted_by: dict | None = None,
        boosted_at: datetime | None = None,
) -> dict:
    """
    Converte um objeto remoto no formato de item da timeline.

    `author` é o actor já resolvido (modelo, dict ou URL); sem ele o autor é
    deduzido de `attributedTo`. `boosted_by` marca o item como boost.
    """
    uid = id_of(obj)
    if not uid:
        raise ValueError("Objeto sem id não pode ser armazenado na timeline")

    if author is None:
        author = field(obj, "attributed_to")
        if isinstance(author, (list, tuple)):
            author = author[0] if author else None

    item_type = "article" if kind_of(obj) == "Article" else "note"
    if boosted_by:
        item_type = "boost"

    category, mentions = _split_tags(obj)
    item = {
        "uid": uid,
        "type": item_type,
        "url": href_of(field(obj, "url")) or uid,
        **extract_content(obj),
        "published": parse_datetime(field(obj, "published")) or utcnow(),
        "author": extract_actor_info(author),
        "category": category,
        "mentions": mentions,
        **_split_attachments(obj),
        "in_reply_to": id_of(field(obj, "in_reply_to")),
    }

    if boosted_by:
        item["boosted_by"] = boosted_by
        item["boosted_at"] = boosted_at or utcnow()

    return item
