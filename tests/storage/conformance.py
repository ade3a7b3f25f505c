import stat

from streamstore.storage import (
    StreamStore, PathNotFoundError, PathExistsError, IsDirectoryError, NotDirectoryError,
    DirectoryNotEmptyError, StorageError,
)


class StreamStoreConformance:
    """Behaviour every stream store must share, mixed into a unittest.TestCase.

        Subclasses implement make_store(); test_root is the directory the tests
        work under.
    """

    test_root = "/"
    synthesized_modes = True
    many_files = 1010

    def make_store(self) -> StreamStore:
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()
        if self.test_root != "/":
            self.store.mkdir_all(self.test_root)

    def tearDown(self):
        self.store.close()

    def _path(self, *parts) -> str:
        return "/".join([self.test_root.rstrip("/")] + list(parts))

    def _write(self, path: str, data: bytes):
        with self.store.open_write(path) as writer:
            writer.write(data)

    def _read(self, path: str) -> bytes:
        with self.store.open_read(path) as reader:
            return reader.read()

    def test_open_read_not_existing(self):
        with self.assertRaises(PathNotFoundError):
            self.store.open_read(self._path("not_existing_file"))

    def test_open_read_on_directory(self):
        name = self._path("TestOpenReadOnDirectory")
        self.store.mkdir(name)
        with self.assertRaises(IsDirectoryError):
            self.store.open_read(name)

    def test_create_new_file(self):
        name = self._path("TestCreateNewFile")
        self._write(name, bytes([0, 1, 2, 3, 4]))
        info = self.store.stat(name)
        self.assertFalse(info.is_dir)
        self.assertEqual(info.size, 5)
        self.assertEqual(info.name, "TestCreateNewFile")
        self.assertEqual(self._read(name), bytes([0, 1, 2, 3, 4]))

    def test_open_write_on_existing_dir(self):
        name = self._path("TestOpenWriteOnExistingDir")
        self.store.mkdir(name)
        with self.assertRaises(IsDirectoryError):
            self.store.open_write(name)

    def test_open_write_inside_existing_file(self):
        name = self._path("TestOpenWriteInsideExistingFile")
        self._write(name, b"hello")
        with self.assertRaises(StorageError) as h:
            with self.store.open_write(name + "/inner") as writer:
                writer.write(b"world")
        self.assertIsInstance(h.exception, (NotDirectoryError, PathNotFoundError))

    def test_open_write_missing_parent(self):
        with self.assertRaises(PathNotFoundError):
            self.store.open_write(self._path("TestOpenWriteMissingParent", "file"))

    def test_mkdir_at_root(self):
        name = self._path("TestMkdirAtRoot")
        self.store.mkdir(name)
        info = self.store.stat(name)
        self.assertTrue(info.is_dir)
        self.assertEqual(info.size, 4096)

    def test_mkdir_trailing_slash(self):
        name = self._path("TestMkdirTrailingSlash") + "/"
        self.store.mkdir(name)
        info = self.store.stat(name)
        self.assertTrue(info.is_dir)
        self.assertEqual(info.size, 4096)
        self.assertEqual(info.name, "TestMkdirTrailingSlash")

    def test_mkdir_on_existing_dir(self):
        name = self._path("TestMkdirOnExistingDir")
        self.store.mkdir(name)
        with self.assertRaises(PathExistsError) as h:
            self.store.mkdir(name)
        self.assertIn("file exists", str(h.exception))

    def test_mkdir_on_existing_file(self):
        name = self._path("TestMkdirOnExistingFile")
        self.store.mkdir(name)
        file_name = self._path("TestMkdirOnExistingFile", "testfile")
        self._write(file_name, bytes([0, 1, 2, 3, 4]))
        with self.assertRaises(PathExistsError):
            self.store.mkdir(file_name)

    def test_mkdir_in_non_existing_dir(self):
        with self.assertRaises(PathNotFoundError):
            self.store.mkdir(self._path("TestMkdirInNonExistingDir", "innerdir"))

    def test_remove_non_existing_at_root(self):
        with self.assertRaises(PathNotFoundError):
            self.store.remove(self._path("not_existing_file"))

    def test_remove_non_existing_in_subdir(self):
        top = self._path("TestRemoveNonExistingInSubdir")
        self.store.mkdir(top)
        with self.assertRaises(PathNotFoundError):
            self.store.remove(self._path("TestRemoveNonExistingInSubdir", "not_existing_file"))

    def test_remove_parent_dir_does_not_exist(self):
        with self.assertRaises(PathNotFoundError):
            self.store.remove(self._path("TestRemoveParentDirDoesNotExist", "some_filename"))

    def test_remove_below_file(self):
        name = self._path("TestRemoveBelowFile")
        self._write(name, b"data")
        with self.assertRaises(PathNotFoundError):
            self.store.remove(self._path("TestRemoveBelowFile", "child"))
        self.assertEqual(self._read(name), b"data")

    def test_remove_empty_dir(self):
        name = self._path("TestRemoveEmptyDir")
        self.store.mkdir(name)
        self.assertTrue(self.store.stat(name).is_dir)
        self.store.remove(name)
        with self.assertRaises(PathNotFoundError):
            self.store.stat(name)

    def test_remove_non_empty_dir(self):
        name = self._path("TestRemoveNonEmptyDir")
        self.store.mkdir(name)
        self._write(self._path("TestRemoveNonEmptyDir", "a_file"), bytes([0, 1, 2, 3, 4]))
        with self.assertRaises(DirectoryNotEmptyError) as h:
            self.store.remove(name)
        self.assertIn("directory not empty", str(h.exception))
        self.assertEqual(self.store.stat(name).name, "TestRemoveNonEmptyDir")

    def test_remove_file_in_dir(self):
        dir_name = self._path("TestRemoveFileInDir")
        file_name = self._path("TestRemoveFileInDir", "a_file")
        self.store.mkdir(dir_name)
        self._write(file_name, b"\x01")
        self.assertFalse(self.store.stat(file_name).is_dir)
        self.store.remove(file_name)
        with self.assertRaises(PathNotFoundError):
            self.store.stat(file_name)
        self.assertEqual(self.store.readdir(dir_name), [])

    def test_remove_root(self):
        with self.assertRaises(StorageError):
            self.store.remove("/")

    def test_overwrite(self):
        name = self._path("TestOverwrite")
        self._write(name, bytes([0, 1, 2, 3, 4]))
        self.assertEqual(self._read(name), bytes([0, 1, 2, 3, 4]))
        self._write(name, bytes([5, 6, 7]))
        self.assertEqual(self._read(name), bytes([5, 6, 7]))
        self.assertEqual(self.store.stat(name).size, 3)

    def test_readdir(self):
        top = self._path("TestReaddir")
        dir1 = self._path("TestReaddir", "dir1")
        self.store.mkdir(top)
        self.store.mkdir(dir1)
        self._write(self._path("TestReaddir", "file1"), b"\x01")
        self._write(self._path("TestReaddir", "dir1", "file2"), b"\x02")
        entries = self.store.readdir(top)
        self.assertEqual([x.name for x in entries], ["dir1", "file1"])
        self.assertTrue(entries[0].is_dir)
        self.assertFalse(entries[1].is_dir)
        self.assertEqual(entries[1].size, 1)
        entries = self.store.readdir(dir1)
        self.assertEqual([x.name for x in entries], ["file2"])

    def test_readdir_missing(self):
        with self.assertRaises(PathNotFoundError):
            self.store.readdir(self._path("TestReaddirMissing"))

    def test_readdir_on_file(self):
        name = self._path("TestReaddirOnFile")
        self._write(name, b"data")
        with self.assertRaises(NotDirectoryError):
            self.store.readdir(name)

    def test_readdir_many_files(self):
        top = self._path("TestReaddirManyFiles")
        self.store.mkdir(top)
        for i in range(0, self.many_files):
            self._write(self._path("TestReaddirManyFiles", f"file{i}"), b"\x01")
        entries = self.store.readdir(top)
        self.assertEqual(len(entries), self.many_files)
        names = [x.name for x in entries]
        self.assertEqual(names, sorted(names))

    def test_stat(self):
        top = self._path("TestStat")
        dir_name = self._path("TestStat", "dir")
        file_name = self._path("TestStat", "dir", "file")
        self.store.mkdir(top)
        self.store.mkdir(dir_name)
        self._write(file_name, b"\x02")
        info = self.store.stat(dir_name)
        self.assertTrue(info.is_dir)
        self.assertEqual(info.name, "dir")
        self.assertEqual(info.size, 4096)
        self.assertTrue(stat.S_ISDIR(info.mode))
        if self.synthesized_modes:
            self.assertEqual(info.mode, stat.S_IFDIR | 0o755)
        info = self.store.stat(file_name)
        self.assertFalse(info.is_dir)
        self.assertEqual(info.name, "file")
        self.assertEqual(info.size, 1)
        if self.synthesized_modes:
            self.assertEqual(info.mode, 0o644)
        root = self.store.stat("/")
        self.assertTrue(root.is_dir)
        self.assertEqual(root.name, "/")

    def test_stat_is_idempotent(self):
        name = self._path("TestStatIdempotent")
        self.store.mkdir(name)
        self.assertEqual(self.store.stat(name), self.store.stat(name))

    def test_lstat(self):
        name = self._path("TestLstat")
        self._write(name, b"abc")
        info = self.store.lstat(name)
        self.assertFalse(info.is_dir)
        self.assertEqual(info.size, 3)

    def test_abort_discards_write(self):
        name = self._path("TestAbort")
        writer = self.store.open_write(name)
        writer.write(b"partial")
        writer.abort()
        self.assertFalse(self.store.exists(name))

    def test_abort_keeps_previous_content(self):
        name = self._path("TestAbortOverwrite")
        self._write(name, b"original")
        writer = self.store.open_write(name)
        writer.write(b"new")
        writer.abort()
        self.assertEqual(self._read(name), b"original")
        self.assertEqual([e.name for e in self.store.readdir(self.test_root) if e.name.startswith(".TestAbortOverwrite")], [])

    def test_failed_block_keeps_previous_content(self):
        name = self._path("TestContextOverwrite")
        self._write(name, b"original")
        with self.assertRaises(ValueError):
            with self.store.open_write(name) as writer:
                writer.write(b"new")
                raise ValueError("stop")
        self.assertEqual(self._read(name), b"original")

    def test_context_manager_aborts_on_error(self):
        name = self._path("TestContextAbort")
        with self.assertRaises(ValueError):
            with self.store.open_write(name) as writer:
                writer.write(b"partial")
                raise ValueError("stop")
        self.assertFalse(self.store.exists(name))

    def test_write_after_close(self):
        writer = self.store.open_write(self._path("TestWriteAfterClose"))
        writer.write(b"a")
        writer.close()
        with self.assertRaises(StorageError):
            writer.write(b"b")

    def test_read_at_and_seek(self):
        name = self._path("TestReadAtSeek")
        self._write(name, b"0123456789")
        with self.store.open_read(name) as reader:
            self.assertEqual(reader.read(3), b"012")
            self.assertEqual(reader.read_at(4, 5), b"5678")
            self.assertEqual(reader.read_at(4, 8), b"89")
            self.assertEqual(reader.read_at(4, 20), b"")
            self.assertEqual(reader.tell(), 3)
            self.assertEqual(reader.read(2), b"34")
            reader.seek(7)
            self.assertEqual(reader.tell(), 7)
            self.assertEqual(reader.read(), b"789")
            self.assertEqual(reader.read(), b"")
            reader.seek(1)
            self.assertEqual(reader.read(2), b"12")
            self.assertEqual(reader.tell(), 3)

    def test_read_empty_file(self):
        name = self._path("TestReadEmpty")
        self._write(name, b"")
        self.assertEqual(self.store.stat(name).size, 0)
        self.assertEqual(self._read(name), b"")

    def test_mkdir_all(self):
        self.store.mkdir_all(self._path("TestMkdirAll", "bar", "baz", "qux", "quux") + "/")
        entries = self.store.readdir(self._path("TestMkdirAll", "bar", "baz", "qux"))
        self.assertEqual([x.name for x in entries], ["quux"])

    def test_mkdir_all_existing(self):
        name = self._path("TestMkdirAllExisting", "bar", "baz")
        self.store.mkdir_all(name)
        self.store.mkdir_all(name)
        self.assertTrue(self.store.is_dir(name))

    def test_mkdir_all_on_file(self):
        name = self._path("TestMkdirAllOnFile")
        self._write(name, b"x")
        with self.assertRaises(NotDirectoryError):
            self.store.mkdir_all(name)

    def test_read_write_bytes(self):
        name = self._path("TestReadWriteBytes")
        self.store.write_bytes(name, b"some content")
        self.assertEqual(self.store.read_bytes(name), b"some content")

    def test_search(self):
        self.store.mkdir_all(self._path("TestSearch", "sub"))
        self._write(self._path("TestSearch", "one.txt"), b"1")
        self._write(self._path("TestSearch", "two.csv"), b"2")
        self._write(self._path("TestSearch", "sub", "three.txt"), b"3")
        found = list(self.store.search(self._path("TestSearch"), "*.txt"))
        self.assertEqual(found, [
            self._path("TestSearch", "one.txt"),
            self._path("TestSearch", "sub", "three.txt"),
        ])
