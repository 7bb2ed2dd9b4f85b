#!/usr/bin/env python3
"""Mirror one page, or a directory of HTML files, with its images and stylesheets."""
import argparse
import logging
import os
import posixpath
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from html import escape
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union
from urllib.parse import ParseResult, urljoin, urlparse
from urllib.request import url2pathname

import requests
from bs4 import BeautifulSoup

# -------------------- Config --------------------

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
}

STYLE_BLOCK_RE = re.compile(r"<style.*?>.*?</style>", re.IGNORECASE | re.DOTALL)
# unquoted values end at ASCII whitespace: \t \n \f \r and space
BACKGROUND_IMAGE_RE = re.compile(r"background-image[\t\n\f\r ]*:[\t\n\f\r ]*([^;]+)")
CSS_URL_RE = re.compile(r"url\(['\"]?([^'\")]+)['\"]?\)")
IMG_SRC_RE = re.compile(r"<img[^>]+src=['\"]?([^'\"\t\n\f\r >]+)['\"]?")
# href has to come before rel inside the tag
LINK_STYLESHEET_RE = re.compile(
    r"<link[^>]+href=['\"]?([^'\"\t\n\f\r >]+)['\"]?[^>]*rel=['\"]?stylesheet['\"]?"
)
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

CSS_DIR = "css"
FALLBACK_STYLESHEET_NAME = "style.css"
HTML_SUFFIX = ".html"

PathLike = Union[str, os.PathLike]


# -------------------- Settings --------------------


@dataclass
class Settings:
    timeout: Optional[float] = None  # None keeps the transport default
    chunk_size: int = 64 * 1024
    parser: str = "regex"  # regex | soup
    rewrite_failed: bool = True
    headers: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))


# -------------------- Errors --------------------


class MirrorError(Exception):
    pass


class InvalidURL(MirrorError):
    pass


class FetchError(MirrorError):
    def __init__(self, url: str, reason: str):
        super().__init__(f"error downloading {url}: {reason}")
        self.url = url
        self.reason = reason


class FilesystemError(MirrorError):
    def __init__(self, message: str, path: Optional[PathLike] = None):
        super().__init__(message)
        self.path = path


# -------------------- Model --------------------


class AssetKind(str, Enum):
    IMAGE = "image"
    STYLESHEET = "stylesheet"


@dataclass
class AssetReference:
    raw_url: str
    kind: AssetKind
    source_document: Path
    # text as written in the document when it differs from raw_url (entities)
    markup_url: Optional[str] = None


@dataclass
class ResolvedAsset:
    """An extracted reference with its resolved URL and site-relative local path."""

    reference: AssetReference
    absolute_url: Optional[str]
    local_path: str
    download_ok: bool = False

    @property
    def raw_url(self) -> str:
        return self.reference.raw_url

    @property
    def kind(self) -> AssetKind:
        return self.reference.kind

    @property
    def original_text(self) -> str:
        return self.reference.markup_url or self.reference.raw_url

    @property
    def replacement_text(self) -> str:
        if self.reference.markup_url is None:
            return self.local_path
        return escape(self.local_path, quote=False)


# -------------------- URL resolution --------------------


def _parse_url(u: str, what: str) -> ParseResult:
    if CONTROL_CHARS_RE.search(u):
        raise InvalidURL(
            f"error parsing {what} {u!r}: invalid control character in URL"
        )
    try:
        return urlparse(u)
    except ValueError as e:
        raise InvalidURL(f"error parsing {what} {u!r}: {e}") from e


def resolve_url(candidate: str, base: str) -> str:
    """Resolve ``candidate`` against ``base`` (RFC 3986 section 5).

    Candidates that already carry a scheme are returned untouched.
    """
    if _parse_url(candidate, "URL").scheme:
        return candidate
    _parse_url(base, "base URL")
    try:
        return urljoin(base, candidate)
    except ValueError as e:
        raise InvalidURL(f"error resolving {candidate!r} against {base!r}: {e}") from e


def is_http_url(u: Optional[str]) -> bool:
    if not u:
        return False
    try:
        return urlparse(u).scheme in {"http", "https"}
    except ValueError:
        return False


def directory_base_url(dir_path: PathLike) -> str:
    uri = Path(dir_path).resolve().as_uri()
    return uri if uri.endswith("/") else uri + "/"


# -------------------- Extraction --------------------


def _clean(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values:
        v = v.strip()
        if v:
            out.append(v)
    return out


def background_image_urls(css: str) -> List[str]:
    urls: List[str] = []
    for decl in BACKGROUND_IMAGE_RE.finditer(css):
        urls.extend(_clean(m.group(1) for m in CSS_URL_RE.finditer(decl.group(1))))
    return urls


def extract_images(html: str) -> List[str]:
    """Image URLs from <style> background-image declarations, then <img src>."""
    urls: List[str] = []
    for block in STYLE_BLOCK_RE.finditer(html):
        urls.extend(background_image_urls(block.group(0)))
    urls.extend(_clean(m.group(1) for m in IMG_SRC_RE.finditer(html)))
    return urls


def extract_stylesheets(html: str) -> List[str]:
    urls = _clean(m.group(1) for m in LINK_STYLESHEET_RE.finditer(html))
    if not urls:
        logging.debug("no stylesheets found in HTML")
    return urls


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


class AssetExtractor:
    def images(self, html: str) -> List[str]:
        raise NotImplementedError

    def stylesheets(self, html: str) -> List[str]:
        raise NotImplementedError

    def markup(self, url: str, html: str) -> Optional[str]:
        """How ``url`` is spelled in ``html``, or None when it is spelled as-is."""
        return None


class RegexExtractor(AssetExtractor):
    def images(self, html: str) -> List[str]:
        return extract_images(html)

    def stylesheets(self, html: str) -> List[str]:
        return extract_stylesheets(html)


class SoupExtractor(AssetExtractor):
    """Parser-backed extraction.

    Same ordering as the regex rules, but <link> attributes may appear in any
    order. Values come back entity-decoded; ``markup`` finds the escaped
    spelling so the rewriter can still match it.
    """

    def markup(self, url: str, html: str) -> Optional[str]:
        for spelled in (escape(url, quote=False), escape(url)):
            if spelled != url and spelled in html:
                return spelled
        return None

    def images(self, html: str) -> List[str]:
        soup = bs4_parse(html)
        urls: List[str] = []
        for style in soup.find_all("style"):
            urls.extend(background_image_urls(style.get_text()))
        urls.extend(_clean(img["src"] for img in soup.find_all("img", src=True)))
        return urls

    def stylesheets(self, html: str) -> List[str]:
        soup = bs4_parse(html)
        hrefs: List[str] = []
        for link in soup.find_all("link", href=True):
            rel = link.get("rel") or []
            if isinstance(rel, str):
                rel = rel.split()
            if "stylesheet" in {r.lower() for r in rel}:
                hrefs.append(link["href"])
        urls = _clean(hrefs)
        if not urls:
            logging.debug("no stylesheets found in HTML")
        return urls


EXTRACTORS = {
    "regex": RegexExtractor,
    "soup": SoupExtractor,
}


def get_extractor(settings: Settings) -> AssetExtractor:
    cls = EXTRACTORS.get(settings.parser)
    if cls is None:
        raise ValueError(f"unknown parser: {settings.parser}")
    return cls()


# -------------------- Output layout --------------------


def image_local_path(raw_url: str) -> str:
    return raw_url.lstrip("/")


def stylesheet_local_path(raw_url: str) -> str:
    name = posixpath.basename(raw_url.rstrip("/"))
    if name in {"", ".", ".."}:
        name = FALLBACK_STYLESHEET_NAME
    return posixpath.join(CSS_DIR, name)


def local_target(target_dir: PathLike, local_path: str) -> Path:
    return Path(os.path.normpath(os.path.join(target_dir, local_path)))


# -------------------- Fetching --------------------


def build_session(settings: Optional[Settings] = None) -> requests.Session:
    settings = settings or Settings()
    s = requests.Session()
    s.headers.update(settings.headers)
    return s


def ensure_parent_dir(p: Path) -> None:
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"error creating directory for {p}: {e}", path=p) from e


def _write_chunks(target: Path, chunks: Iterable[bytes]) -> int:
    try:
        f = open(target, "wb")
    except OSError as e:
        raise FilesystemError(f"error creating file {target}: {e}", path=target) from e
    written = 0
    with f:
        for chunk in chunks:
            if not chunk:
                continue
            try:
                f.write(chunk)
            except OSError as e:
                raise FilesystemError(
                    f"error writing file {target}: {e}", path=target
                ) from e
            written += len(chunk)
    return written


def _read_chunks(fh, url: str, chunk_size: int) -> Iterator[bytes]:
    while True:
        try:
            chunk = fh.read(chunk_size)
        except OSError as e:
            raise FetchError(url, str(e)) from e
        if not chunk:
            return
        yield chunk


def copy_local_file(file_url: str, target: Path, chunk_size: int) -> int:
    """Materialize a file:// asset; requests has no adapter for that scheme."""
    source = Path(url2pathname(urlparse(file_url).path))
    if source.resolve() == target.resolve():
        logging.debug("asset already in place: %s", target)
        return 0
    try:
        fh = open(source, "rb")
    except OSError as e:
        raise FetchError(file_url, str(e)) from e
    with fh:
        return _write_chunks(target, _read_chunks(fh, file_url, chunk_size))


def download(
    asset_url: str,
    target_path: PathLike,
    base_url: str,
    session: Optional[requests.Session] = None,
    settings: Optional[Settings] = None,
) -> Path:
    settings = settings or Settings()
    absolute_url = resolve_url(asset_url, base_url)
    target = Path(target_path)
    ensure_parent_dir(target)

    if urlparse(absolute_url).scheme == "file":
        copy_local_file(absolute_url, target, settings.chunk_size)
        return target

    own_session = session is None
    if own_session:
        session = build_session(settings)
    try:
        # status codes are not checked: whatever body arrives is saved
        with session.get(absolute_url, timeout=settings.timeout, stream=True) as resp:
            _write_chunks(target, resp.iter_content(chunk_size=settings.chunk_size))
    except requests.RequestException as e:
        raise FetchError(absolute_url, str(e)) from e
    finally:
        if own_session:
            session.close()
    return target


# -------------------- Rewriters --------------------


def _sub_literal(pattern: str, replacement: str, text: str) -> str:
    return re.sub(pattern, lambda _m: replacement, text)


def rewrite_image_urls(
    html: str, original_urls: Sequence[str], new_urls: Sequence[str]
) -> str:
    # zip drops originals that have no replacement
    for old, new in zip(original_urls, new_urls):
        quoted = re.escape(old)
        html = _sub_literal(
            r"url\(['\"]?" + quoted + r"['\"]?\)", f'url("{new}")', html
        )
        html = _sub_literal(r"src=['\"]?" + quoted + r"['\"]?", f'src="{new}"', html)
    return html


def rewrite_stylesheet_urls(
    html: str, original_urls: Sequence[str], new_urls: Sequence[str]
) -> str:
    for old, new in zip(original_urls, new_urls):
        quoted = re.escape(old)
        html = _sub_literal(r"href=['\"]?" + quoted + r"['\"]?", f'href="{new}"', html)
    return html


def rewrite_document(
    html: str, assets: Sequence[ResolvedAsset], *, rewrite_failed: bool = True
) -> str:
    selected = [a for a in assets if rewrite_failed or a.download_ok]
    images = [a for a in selected if a.kind is AssetKind.IMAGE]
    sheets = [a for a in selected if a.kind is AssetKind.STYLESHEET]
    html = rewrite_image_urls(
        html, [a.original_text for a in images], [a.replacement_text for a in images]
    )
    return rewrite_stylesheet_urls(
        html, [a.original_text for a in sheets], [a.replacement_text for a in sheets]
    )


# -------------------- Documents --------------------


def read_document(path: Path) -> str:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise FilesystemError(f"error reading file {path}: {e}", path=path) from e
    return data.decode("utf-8", errors="surrogateescape")


def write_document(path: Path, content: str) -> None:
    try:
        path.write_bytes(content.encode("utf-8", errors="surrogateescape"))
    except OSError as e:
        raise FilesystemError(f"error updating file {path}: {e}", path=path) from e


def materialize(
    reference: AssetReference,
    local_path: str,
    target_dir: Path,
    base_url: str,
    session: requests.Session,
    settings: Settings,
) -> ResolvedAsset:
    asset = ResolvedAsset(reference=reference, absolute_url=None, local_path=local_path)
    target = local_target(target_dir, local_path)
    try:
        asset.absolute_url = resolve_url(reference.raw_url, base_url)
        download(
            asset.absolute_url, target, base_url, session=session, settings=settings
        )
    except MirrorError as e:
        logging.warning("failed to download %s: %s", reference.raw_url, e)
        return asset
    asset.download_ok = True
    logging.info("downloaded %s -> %s", reference.raw_url, target)
    return asset


def process_html_content(
    content: str,
    file_path: PathLike,
    base_url: str,
    target_dir: PathLike,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> List[ResolvedAsset]:
    settings = settings or Settings()
    extractor = get_extractor(settings)
    file_path = Path(file_path)
    target_dir = Path(target_dir)

    images = extractor.images(content)
    stylesheets = extractor.stylesheets(content)
    logging.info(
        "%s: %d image(s), %d stylesheet(s)", file_path, len(images), len(stylesheets)
    )

    assets: List[ResolvedAsset] = []
    own_session = session is None
    if own_session:
        session = build_session(settings)
    try:
        for img in images:
            ref = AssetReference(
                img, AssetKind.IMAGE, file_path, extractor.markup(img, content)
            )
            local_path = image_local_path(img)
            assets.append(
                materialize(ref, local_path, target_dir, base_url, session, settings)
            )
        for css in stylesheets:
            ref = AssetReference(
                css, AssetKind.STYLESHEET, file_path, extractor.markup(css, content)
            )
            local_path = stylesheet_local_path(css)
            assets.append(
                materialize(ref, local_path, target_dir, base_url, session, settings)
            )
    finally:
        if own_session:
            session.close()

    updated = rewrite_document(content, assets, rewrite_failed=settings.rewrite_failed)
    write_document(file_path, updated)
    return assets


# -------------------- Main: single page --------------------


def download_and_save(
    url: str,
    base_dir: PathLike = ".",
    convert_links: bool = False,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> Path:
    settings = settings or Settings()
    host = _parse_url(url, "URL").hostname
    if not host:
        raise InvalidURL(f"invalid URL {url}: no host")
    target_dir = Path(base_dir) / host
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(
            f"error creating directory {target_dir}: {e}", path=target_dir
        ) from e

    own_session = session is None
    if own_session:
        session = build_session(settings)
    try:
        logging.info("GET %s", url)
        try:
            body = session.get(url, timeout=settings.timeout).content
        except requests.RequestException as e:
            raise FetchError(url, str(e)) from e

        output_file = target_dir / "index.html"
        content = body.decode("utf-8", errors="surrogateescape")
        write_document(output_file, content)
        if convert_links:
            content = content.replace(url, "/")
        process_html_content(content, output_file, url, target_dir, settings, session)
    finally:
        if own_session:
            session.close()
    return output_file


# -------------------- Main: directory scan --------------------


def _raise_walk_error(err: OSError) -> None:
    raise FilesystemError(
        f"error walking {err.filename}: {err}", path=err.filename
    ) from err


def iter_html_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames.sort()
        for name in sorted(filenames):
            if name.lower().endswith(HTML_SUFFIX):
                yield Path(dirpath) / name


def scan_directory(
    dir_path: PathLike,
    base_url: Optional[str] = None,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> List[Path]:
    """Process every .html file under ``dir_path``; assets land under ``dir_path``.

    Stops at the first file that cannot be read or written.
    """
    root = Path(dir_path)
    settings = settings or Settings()
    if base_url is None:
        base_url = directory_base_url(root)

    processed: List[Path] = []
    own_session = session is None
    if own_session:
        session = build_session(settings)
    try:
        for path in iter_html_files(root):
            content = read_document(path)
            process_html_content(content, path, base_url, root, settings, session)
            processed.append(path)
    finally:
        if own_session:
            session.close()
    return processed


# -------------------- CLI --------------------

USAGE = """Usage:
  For downloading: page-mirror --mirror [--convert-links] <url>
  For scanning: page-mirror -dir <directory_path>
Example: page-mirror --mirror https://example.com/
Example: page-mirror -dir ./website"""


class UsageArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        print(f"Error: {message}")
        print(USAGE)
        sys.exit(1)


def build_arg_parser() -> argparse.ArgumentParser:
    p = UsageArgumentParser(
        prog="page-mirror",
        description="Mirror a page or a directory of HTML files with their "
        "images and stylesheets.",
    )
    p.add_argument("url", nargs="?", default=None, help="http(s) URL to mirror")
    p.add_argument("--mirror", action="store_true", help="mirror the page at URL")
    p.add_argument(
        "--convert-links",
        action="store_true",
        help="replace absolute references to URL with /",
    )
    p.add_argument(
        "-dir",
        "--dir",
        dest="dir",
        default=None,
        help="directory containing HTML files",
    )
    p.add_argument("--output", default=".", help="base directory for mirrored sites")
    p.add_argument(
        "--parser",
        choices=sorted(EXTRACTORS),
        default="regex",
        help="asset extractor",
    )
    p.add_argument(
        "--skip-failed",
        action="store_true",
        help="keep original URLs for assets that failed to download",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def main(argv: Optional[List[str]] = None) -> None:
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    settings = Settings(parser=args.parser, rewrite_failed=not args.skip_failed)

    if is_http_url(args.url):
        if not args.mirror:
            print("Error: --mirror flag is required for URL downloads")
            print("Usage: page-mirror --mirror [--convert-links] <url>")
            sys.exit(1)
        try:
            index = download_and_save(
                args.url, args.output, args.convert_links, settings
            )
        except MirrorError as e:
            print(f"Error: {e}")
            sys.exit(1)
        print("Mirroring complete")
        print(f"Saved to: {index}")
        return

    if not args.dir:
        print(USAGE)
        sys.exit(1)

    if not os.path.exists(args.dir):
        print(f"Error: Directory {args.dir} does not exist")
        sys.exit(1)
    if not os.path.isdir(args.dir):
        print(f"Error: {args.dir} is not a directory")
        sys.exit(1)

    try:
        processed = scan_directory(args.dir, settings=settings)
    except MirrorError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Processed {len(processed)} HTML file(s) under {args.dir}")


if __name__ == "__main__":
    main()
