import gc
import os
import shutil
import sys
import tempfile
import unittest

# Ensure we can import vibedocs
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from vibedocs.core.errors import ConflictExhausted, ValidationError
from vibedocs.core.upload import (
    DirectoryLocks,
    InvalidName,
    TooManyConflicts,
    sanitize_name,
    split_name,
    write_uploaded_file,
    write_uploaded_files,
)


class TestNames(unittest.TestCase):

    def test_directory_components_stripped(self):
        self.assertEqual(sanitize_name('../../evil.md'), 'evil.md')
        self.assertEqual(sanitize_name('..\\..\\evil.md'), 'evil.md')
        self.assertEqual(sanitize_name('plain.md'), 'plain.md')

    def test_invalid_names(self):
        for name in ('', 'dir/', '..', '.', 'a\x00b'):
            with self.assertRaises(InvalidName):
                sanitize_name(name)

    def test_invalid_name_is_validation_error(self):
        self.assertTrue(issubclass(InvalidName, ValidationError))
        self.assertTrue(issubclass(TooManyConflicts, ConflictExhausted))

    def test_split_name(self):
        self.assertEqual(split_name('report.md'), ('report', '.md'))
        self.assertEqual(split_name('Makefile'), ('Makefile', ''))
        self.assertEqual(split_name('archive.tar.gz'), ('archive.tar', '.gz'))


class TestWriteUploadedFile(unittest.TestCase):

    def setUp(self):
        self.project = os.path.realpath(tempfile.mkdtemp())
        self.target = os.path.join(self.project, 'docs')
        os.makedirs(self.target)
        self.locks = DirectoryLocks()

    def tearDown(self):
        shutil.rmtree(self.project, ignore_errors=True)

    def touch(self, name, content=b'old'):
        with open(os.path.join(self.target, name), 'wb') as f:
            f.write(content)

    def read(self, name):
        with open(os.path.join(self.target, name), 'rb') as f:
            return f.read()

    def upload(self, name, data=b'new'):
        return write_uploaded_file(self.target, name, data, project_dir=self.project, locks=self.locks)

    def test_fresh_name(self):
        result = self.upload('a.md')
        self.assertEqual(result.saved_name, 'a.md')
        self.assertEqual(result.relative_path, 'docs/a.md')
        self.assertEqual(self.read('a.md'), b'new')

    def test_first_free_suffix(self):
        self.touch('exist.md')
        result = self.upload('exist.md')
        self.assertEqual(result.saved_name, 'exist-1.md')
        self.assertEqual(self.read('exist.md'), b'old')

    def test_suffix_chain(self):
        self.touch('exist.md')
        for i in range(1, 6):
            self.touch(f'exist-{i}.md')
        self.assertEqual(self.upload('exist.md').saved_name, 'exist-6.md')

    def test_name_without_extension(self):
        self.touch('Makefile')
        self.assertEqual(self.upload('Makefile').saved_name, 'Makefile-1')

    def test_traversing_name_lands_in_target(self):
        result = self.upload('../../evil.md')
        self.assertEqual(result.saved_name, 'evil.md')
        self.assertTrue(os.path.exists(os.path.join(self.target, 'evil.md')))
        self.assertFalse(os.path.exists(os.path.join(os.path.dirname(self.project), 'evil.md')))

    def test_too_many_conflicts(self):
        self.touch('f.md')
        for i in range(1, 101):
            self.touch(f'f-{i}.md')
        with self.assertRaises(TooManyConflicts) as ctx:
            self.upload('f.md')
        self.assertEqual(ctx.exception.message, 'Too many naming conflicts for "f.md"')
        self.assertEqual(ctx.exception.status, 500)
        self.assertFalse(os.path.exists(os.path.join(self.target, 'f-101.md')))

    def test_batch_with_duplicate_names(self):
        results = write_uploaded_files(
            self.target, [('a.png', b'1'), ('a.png', b'2')],
            project_dir=self.project, locks=self.locks,
        )
        self.assertEqual([r.saved_name for r in results], ['a.png', 'a-1.png'])
        self.assertEqual(self.read('a.png'), b'1')
        self.assertEqual(self.read('a-1.png'), b'2')

    def test_relative_path_defaults_to_target(self):
        result = write_uploaded_file(self.target, 'b.md', b'x', locks=self.locks)
        self.assertEqual(result.relative_path, 'b.md')

    def test_to_dict(self):
        result = self.upload('../c.md')
        self.assertEqual(result.to_dict(), {
            'originalName': 'c.md',
            'savedName': 'c.md',
            'relativePath': 'docs/c.md',
        })


class TestDirectoryLocks(unittest.TestCase):

    def test_same_directory_same_lock(self):
        locks = DirectoryLocks()
        tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmp, True)
        self.assertIs(locks.get(tmp), locks.get(os.path.join(tmp, '.')))
        other = os.path.join(tmp, 'sub')
        self.assertIsNot(locks.get(tmp), locks.get(other))

    def test_released_locks_are_dropped(self):
        locks = DirectoryLocks()
        tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmp, True)
        for i in range(5):
            with locks.get(os.path.join(tmp, str(i))):
                pass
        gc.collect()
        self.assertEqual(len(locks), 0)

    def test_held_lock_is_shared(self):
        locks = DirectoryLocks()
        tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmp, True)
        held = locks.get(tmp)
        gc.collect()
        self.assertIs(locks.get(tmp), held)
        self.assertEqual(len(locks), 1)


if __name__ == '__main__':
    unittest.main()
