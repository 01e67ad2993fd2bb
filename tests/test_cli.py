import io
import os
import shutil
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from vibedocs import cli
from vibedocs.version_info import __version__


class TestCli(unittest.TestCase):

    def setUp(self):
        self.root = tempfile.mkdtemp()
        os.makedirs(os.path.join(self.root, 'proj'))
        with open(os.path.join(self.root, 'proj', 'README.md'), 'w', encoding='utf-8') as f:
            f.write('How to install the tool')
        patcher = patch('vibedocs.cli.setup_logging')
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def run_cli(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = cli.main(list(argv))
        return code, out.getvalue()

    def test_version(self):
        code, output = self.run_cli('--version')
        self.assertEqual(code, 0)
        self.assertIn(f'VibeDocs v{__version__}', output)

    def test_search_prints_matches(self):
        code, output = self.run_cli('--root', self.root, 'search', 'install')
        self.assertEqual(code, 0)
        self.assertIn('proj/README.md', output)
        self.assertIn('install', output)

    def test_search_without_matches(self):
        code, output = self.run_cli('--root', self.root, 'search', 'zebra')
        self.assertEqual(code, 1)
        self.assertIn('No matches.', output)

    def test_start_passes_overrides(self):
        with patch('vibedocs.cli.start_server') as start_server:
            code, _ = self.run_cli('--root', self.root, '--port', '9001', '--no-watch', 'start')
        self.assertEqual(code, 0)
        config = start_server.call_args[0][0]
        self.assertEqual(config['port'], 9001)
        self.assertFalse(config['watch'])
        self.assertEqual(config['projects_dir'], self.root)


if __name__ == '__main__':
    unittest.main()
