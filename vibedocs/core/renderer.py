from typing import Dict, List, Optional, Tuple
import logging
import posixpath
import re
from urllib.parse import quote, urlsplit

import markdown
import pymdownx.superfences
from bs4 import BeautifulSoup

from .paths import is_markdown

logger = logging.getLogger(__name__)

TOC_LEVELS = ('h1', 'h2', 'h3')
HEADING_TAGS = ('h1', 'h2', 'h3', 'h4', 'h5', 'h6')

TocItem = Dict[str, object]


def render_github_alerts(md_text: str) -> str:
    """
    Convert GitHub-style alerts to Python-Markdown Admonition syntax.
    > [!NOTE]
    > Content

    Becomes:
    !!! note
        Content
    """
    pattern = r'^>\s*\[!(NOTE|TIP|IMPORTANT|WARNING|CAUTION)\]\s*(.*)$'

    lines = md_text.split('\n')
    out_lines = []
    in_alert = False

    for line in lines:
        match = re.match(pattern, line, re.IGNORECASE)
        if match:
            alert_type = match.group(1).lower()
            remainder = match.group(2)
            out_lines.append(f'!!! {alert_type}')
            if remainder.strip():
                out_lines.append(f'    {remainder}')
            in_alert = True
        elif in_alert and line.strip().startswith('>'):
            # Continuation of the alert block
            content = re.sub(r'^>\s?', '', line)
            out_lines.append(f'    {content}')
        elif in_alert and not line.strip():
            out_lines.append('')
        else:
            if in_alert and line.strip():
                in_alert = False
            out_lines.append(line)

    return '\n'.join(out_lines)


def _build_markdown() -> markdown.Markdown:
    return markdown.Markdown(
        extensions=[
            'tables',
            'sane_lists',
            'toc',
            'attr_list',
            'def_list',
            'abbr',
            'footnotes',
            'md_in_html',
            'admonition',
            'pymdownx.betterem',
            'pymdownx.tilde',
            'pymdownx.details',
            'pymdownx.highlight',
            'pymdownx.inlinehilite',
            'pymdownx.superfences',
            'pymdownx.tasklist',
            'pymdownx.magiclink',
        ],
        extension_configs={
            "pymdownx.highlight": {
                "guess_lang": False,
            },
            "pymdownx.superfences": {
                # Diagram sources pass through untouched for the client-side renderer
                "custom_fences": [
                    {
                        'name': 'mermaid',
                        'class': 'mermaid',
                        'format': pymdownx.superfences.fence_div_format
                    }
                ]
            },
        }
    )


def extract_toc(soup: BeautifulSoup) -> List[TocItem]:
    toc = []
    for heading in soup.find_all(TOC_LEVELS):
        heading_id = heading.get('id')
        if not heading_id:
            continue
        toc.append({
            'level': int(heading.name[1]),
            'id': heading_id,
            'text': heading.get_text(strip=True),
        })
    return toc


def wrap_heading_anchors(soup: BeautifulSoup) -> None:
    """Wrap heading contents in a self link, like GitHub renders them."""
    for heading in soup.find_all(HEADING_TAGS):
        heading_id = heading.get('id')
        if not heading_id or heading.find('a', class_='heading-anchor'):
            continue
        anchor = soup.new_tag('a', href=f'#{heading_id}')
        anchor['class'] = ['heading-anchor']
        for child in list(heading.contents):
            anchor.append(child.extract())
        heading.append(anchor)


def _project_relative(doc_dir: str, target: str) -> Optional[str]:
    """Join a relative link with the document folder; None if it leaves the project."""
    joined = posixpath.normpath(posixpath.join(doc_dir, target)) if doc_dir else posixpath.normpath(target)
    if joined in ('.', '..') or joined.startswith('../') or joined.startswith('/'):
        return None
    return joined


def process_links(soup: BeautifulSoup, project: str, doc_path: str) -> None:
    """
    Point relative links at the API:
    - images and other assets are served by /api/file
    - links to markdown documents become UI routes
    - external links open in a new tab
    """
    doc_dir = posixpath.dirname(doc_path)
    project_url = quote(project, safe='')

    for img in soup.find_all('img'):
        src = img.get('src', '')
        parts = urlsplit(src)
        if not src or parts.scheme or parts.netloc or src.startswith(('/', '#')):
            continue
        target = _project_relative(doc_dir, parts.path)
        if target is None:
            logger.debug(f"Leaving image outside project untouched: {src}")
            continue
        img['src'] = f'/api/file/{project_url}/{quote(target)}'

    for a_tag in soup.find_all('a'):
        href = a_tag.get('href', '')
        if not href or href.startswith('#'):
            continue
        parts = urlsplit(href)
        if parts.scheme in ('http', 'https'):
            a_tag['target'] = '_blank'
            a_tag['rel'] = 'noopener noreferrer'
            continue
        if parts.scheme or parts.netloc or href.startswith('/'):
            continue

        target = _project_relative(doc_dir, parts.path)
        if target is None:
            a_tag['class'] = (a_tag.get('class', []) or []) + ['broken-link']
            continue
        if is_markdown(target):
            fragment = f'#{parts.fragment}' if parts.fragment else ''
            a_tag['href'] = f'#/{project_url}/{quote(target)}{fragment}'
        else:
            a_tag['href'] = f'/api/file/{project_url}/{quote(target)}'


def render_markdown(md_text: str, project: str = None, doc_path: str = None) -> Tuple[str, List[TocItem]]:
    """Render markdown to ``(html, toc)``; toc lists headings of levels 1-3."""
    md_text = render_github_alerts(md_text)

    md_instance = _build_markdown()
    logger.debug(f"Render: {len(md_text)} chars input")
    html_output = md_instance.convert(md_text)

    soup = BeautifulSoup(html_output, 'html.parser')
    toc = extract_toc(soup)
    wrap_heading_anchors(soup)
    if project and doc_path is not None:
        process_links(soup, project, doc_path)

    return str(soup), toc


def render_document(file_path, project: str, doc_path: str) -> Tuple[str, List[TocItem]]:
    """Read and render a document. Filesystem errors propagate to the caller."""
    with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
        md_text = f.read()
    logger.info(f"Rendering document: {project}/{doc_path}, size: {len(md_text)} chars")
    return render_markdown(md_text, project=project, doc_path=doc_path)
