import os
import sys
import unittest

from bs4 import BeautifulSoup

# Ensure we can import vibedocs
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from vibedocs.core.renderer import render_github_alerts, render_markdown


class TestRenderMarkdown(unittest.TestCase):

    def render(self, text, doc_path='docs/guide.md'):
        html, toc = render_markdown(text, project='proj', doc_path=doc_path)
        return BeautifulSoup(html, 'html.parser'), toc

    def test_toc_levels(self):
        _, toc = self.render('# Title\n\n## Install\n\n### Linux\n\n#### Deep\n')
        self.assertEqual([(t['level'], t['id'], t['text']) for t in toc], [
            (1, 'title', 'Title'),
            (2, 'install', 'Install'),
            (3, 'linux', 'Linux'),
        ])

    def test_heading_anchor(self):
        soup, _ = self.render('## Install\n')
        anchor = soup.find('h2').find('a', class_='heading-anchor')
        self.assertIsNotNone(anchor)
        self.assertEqual(anchor['href'], '#install')
        self.assertEqual(anchor.get_text(), 'Install')

    def test_mermaid_passes_through(self):
        soup, _ = self.render('```mermaid\ngraph TD;\n  A-->B;\n```\n')
        diagram = soup.find(class_='mermaid')
        self.assertIsNotNone(diagram)
        self.assertIn('A-->B', diagram.get_text())

    def test_code_is_highlighted(self):
        html, _ = render_markdown('```python\nprint("hi")\n```\n')
        self.assertIn('highlight', html)

    def test_github_alert_becomes_admonition(self):
        soup, _ = self.render('> [!WARNING]\n> Be careful\n')
        admonition = soup.find(class_='admonition')
        self.assertIsNotNone(admonition)
        self.assertIn('warning', admonition['class'])
        self.assertIn('Be careful', admonition.get_text())

    def test_alert_conversion(self):
        self.assertEqual(render_github_alerts('> [!NOTE]\n> Content'), '!!! note\n    Content')

    def test_relative_image_served_by_file_api(self):
        soup, _ = self.render('![logo](img/logo.png)\n')
        self.assertEqual(soup.find('img')['src'], '/api/file/proj/docs/img/logo.png')

    def test_image_outside_project_untouched(self):
        soup, _ = self.render('![x](../../secret.png)\n')
        self.assertEqual(soup.find('img')['src'], '../../secret.png')

    def test_markdown_link_becomes_route(self):
        soup, _ = self.render('[other](../README.md#setup)\n')
        self.assertEqual(soup.find('a')['href'], '#/proj/README.md#setup')

    def test_asset_link_served_by_file_api(self):
        soup, _ = self.render('[pdf](files/manual.pdf)\n')
        self.assertEqual(soup.find('a')['href'], '/api/file/proj/docs/files/manual.pdf')

    def test_link_escaping_project_marked_broken(self):
        soup, _ = self.render('[up](../../other/a.md)\n')
        self.assertIn('broken-link', soup.find('a')['class'])

    def test_external_link_opens_new_tab(self):
        soup, _ = self.render('[site](https://example.com)\n')
        link = soup.find('a')
        self.assertEqual(link['href'], 'https://example.com')
        self.assertEqual(link['target'], '_blank')

    def test_without_project_links_untouched(self):
        html, _ = render_markdown('![logo](img/logo.png)\n')
        self.assertIn('src="img/logo.png"', html)


if __name__ == '__main__':
    unittest.main()
