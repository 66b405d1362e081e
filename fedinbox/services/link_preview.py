"""
fedinbox/services/link_preview.py

Prévias de links (OpenGraph / Twitter card) para itens da timeline.

Fluxo:
1. Extrai os <a href> do HTML já sanitizado
2. Descarta menções, hashtags, URLs de objetos do Fediverso, mídia e
   qualquer destino em rede privada (SSRF)
3. Busca no máximo `link_preview_max_per_post` páginas, passando pelo
   `FetchGate` global (no máximo `link_preview_max_concurrent` buscas em
   andamento no processo inteiro)
4. Grava as prévias no item, em background, sem bloquear o inbox
"""

import asyncio
import ipaddress
import logging
import re
import socket
from contextlib import asynccontextmanager
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from fedinbox.config import settings
from fedinbox.database import utcnow
from fedinbox.storage import timeline

log = logging.getLogger(__name__)

DESCRIPTION_MAX_LENGTH = 160
MAX_REDIRECTS = 3

BLOCKED_NETWORKS = [
    ipaddress.ip_network(network)
    for network in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "127.0.0.0/8",
        "0.0.0.0/8",
        "::1/128",
        "::/128",
        "fc00::/7",
        "fe80::/10",
    )
]

MEDIA_EXTENSIONS = re.compile(r"\.(jpg|jpeg|png|gif|webp|mp4|webm|mov|mp3|wav|ogg)$", re.IGNORECASE)

# Formatos de URL de objetos ActivityPub (heurística, não exaustiva)
FEDIVERSE_OBJECT_PATTERNS = [
    re.compile(r"/@[\w.-]+/\d+"),                   # Mastodon
    re.compile(r"/@[\w.-]+/statuses/\w+"),          # GoToSocial
    re.compile(r"/users/[\w.-]+/statuses/\d+"),     # Mastodon/Pleroma
    re.compile(r"/objects/[\w-]+"),                 # Pleroma/Akkoma
    re.compile(r"/notice/\w+"),                     # Pleroma
    re.compile(r"/notes/\w+"),                      # Misskey
]


class LinkPreviewError(Exception):
    """A página não pôde ser buscada com segurança."""


# ---------------------------------------------------------------------------
# Controle de concorrência
# ---------------------------------------------------------------------------


class FetchGate:
    """
    Limita as buscas simultâneas. Chamadas excedentes esperam em fila (FIFO)
    até uma vaga abrir. `in_flight` e `waiting` expõem o estado atual.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.waiting = 0
        self.peak = 0

    @asynccontextmanager
    async def slot(self):
        self.waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self.waiting -= 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            yield
        finally:
            self.in_flight -= 1
            self._semaphore.release()

    async def run(self, func, *args):
        async with self.slot():
            return await func(*args)


fetch_gate = FetchGate(settings.link_preview_max_concurrent)


# ---------------------------------------------------------------------------
# Filtros
# ---------------------------------------------------------------------------


def _is_blocked_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in network for network in BLOCKED_NETWORKS)


def is_private_url(url: str) -> bool:
    """
    True para esquemas não-http(s), localhost, IPs literais de redes privadas
    e URLs malformadas (porta fora do intervalo, host inválido).
    """
    try:
        parsed = urlparse(url)
        hostname = (parsed.hostname or "").lower()
        parsed.port
    except ValueError:
        return True
    if parsed.scheme not in ("http", "https") or not hostname:
        return True
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return True
    return _is_blocked_address(hostname)


async def resolves_to_private(url: str) -> bool:
    """Resolve o host e bloqueia se qualquer endereço for privado."""
    parsed = urlparse(url)
    hostname = parsed.hostname or ""
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    except socket.gaierror:
        return True
    return any(_is_blocked_address(info[4][0]) for info in infos)


def should_skip_url(url: str) -> bool:
    """Links que não geram prévia: rede privada, mídia e objetos do Fediverso."""
    if is_private_url(url):
        return True
    path = urlparse(url).path
    if MEDIA_EXTENSIONS.search(path):
        return True
    return any(pattern.search(path) for pattern in FEDIVERSE_OBJECT_PATTERNS)


def extract_links(html: str) -> list[dict]:
    """[{url, classes}] para cada <a href> do HTML."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    return [
        {"url": anchor["href"].strip(), "classes": " ".join(anchor.get("class", []))}
        for anchor in soup.find_all("a", href=True)
    ]


def select_urls(html: str, limit: int | None = None) -> list[str]:
    limit = settings.link_preview_max_per_post if limit is None else limit
    urls: list[str] = []
    for link in extract_links(html):
        classes = link["classes"].split()
        if "mention" in classes or "hashtag" in classes:
            continue
        if should_skip_url(link["url"]) or link["url"] in urls:
            continue
        urls.append(link["url"])
    return urls[:limit]


# ---------------------------------------------------------------------------
# Busca e parsing
# ---------------------------------------------------------------------------


def domain_of(url: str) -> str:
    hostname = urlparse(url).hostname or url
    return hostname[4:] if hostname.startswith("www.") else hostname


def truncate(text: str, length: int = DESCRIPTION_MAX_LENGTH) -> str:
    if len(text) <= length:
        return text
    return text[:length].strip() + "…"


async def fetch_page(url: str) -> tuple[str, str]:
    """
    Busca o HTML de `url` seguindo redirects manualmente: cada salto é
    verificado de novo contra redes privadas. Retorna (url final, html).
    """
    async with httpx.AsyncClient(
            headers={"User-Agent": settings.link_preview_user_agent},
            timeout=settings.link_preview_timeout,
            follow_redirects=False,
    ) as client:
        for _ in range(MAX_REDIRECTS + 1):
            if is_private_url(url) or await resolves_to_private(url):
                raise LinkPreviewError(f"{url} aponta para rede privada")
            response = await client.get(url)
            if response.is_redirect:
                url = urljoin(url, response.headers["location"])
                continue
            response.raise_for_status()
            content_type = response.headers.get("content-type", "")
            if "html" not in content_type:
                raise LinkPreviewError(f"{url} não é HTML ({content_type})")
            return url, response.text
    raise LinkPreviewError(f"Redirects demais a partir de {url}")


def _meta(soup: BeautifulSoup, *names: str) -> str:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content", "").strip():
            return tag["content"].strip()
    return ""


def parse_metadata(url: str, html: str) -> dict:
    """Título, descrição, imagem e favicon da página (OpenGraph → Twitter → HTML)."""
    soup = BeautifulSoup(html, "html.parser")

    title = _meta(soup, "og:title", "twitter:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()
    description = _meta(soup, "og:description", "twitter:description", "description")
    image = _meta(soup, "og:image", "og:image:url", "twitter:image", "twitter:image:src")

    icon = soup.find("link", rel=lambda value: value and "icon" in value.lower())
    favicon = urljoin(url, icon["href"]) if icon and icon.get("href") else urljoin(url, "/favicon.ico")

    return {
        "url": url,
        "title": title or domain_of(url),
        "description": truncate(description),
        "image": urljoin(url, image) if image else None,
        "favicon": favicon,
        "domain": domain_of(url),
        "fetched_at": utcnow().isoformat(),
    }


async def _preview(url: str, gate: FetchGate) -> dict | None:
    async with gate.slot():
        try:
            _, html = await asyncio.wait_for(fetch_page(url), timeout=settings.link_preview_timeout)
        except (httpx.HTTPError, LinkPreviewError, asyncio.TimeoutError) as e:
            log.warning(f"Prévia de {url} indisponível: {e!r}")
            return None
        except Exception as e:
            log.error(f"Erro inesperado na prévia de {url}: {e!r}", exc_info=True)
            return None
    try:
        return parse_metadata(url, html)
    except Exception as e:
        log.error(f"Erro ao interpretar a página {url}: {e!r}", exc_info=True)
        return None


async def fetch_link_previews(html: str, gate: FetchGate | None = None) -> list[dict]:
    """Prévias dos links externos de `html`; falhas são omitidas do resultado."""
    urls = select_urls(html)
    if not urls:
        return []
    gate = gate or fetch_gate
    previews = await asyncio.gather(*(_preview(url, gate) for url in urls))
    return [preview for preview in previews if preview is not None]


async def fetch_and_store_previews(uid: str, html: str) -> None:
    """Busca e grava as prévias do item. Nunca propaga erros."""
    try:
        previews = await fetch_link_previews(html)
        await timeline.set_link_previews(uid, previews)
        if previews:
            log.info(f"{len(previews)} prévia(s) gravada(s) em {uid}")
    except Exception as e:
        log.error(f"Erro ao gravar prévias de {uid}: {e}", exc_info=True)


# ---------------------------------------------------------------------------
# Tarefas em background
# ---------------------------------------------------------------------------

_pending: set[asyncio.Task] = set()


def _on_preview_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        log.error(f"Tarefa de prévia falhou: {error!r}")


def schedule_preview_fetch(uid: str, html: str) -> asyncio.Task:
    """Dispara a busca de prévias sem que o chamador espere por ela."""
    task = asyncio.create_task(fetch_and_store_previews(uid, html), name=f"link-preview:{uid}")
    _pending.add(task)
    task.add_done_callback(_on_preview_done)
    return task


async def drain_pending() -> None:
    """Cancela as buscas em andamento. Usado no shutdown."""
    for task in list(_pending):
        task.cancel()
    await asyncio.gather(*_pending, return_exceptions=True)
