import io
import tempfile
import unittest
import zipfile
import zlib

from datetime import datetime
from pathlib import Path

from atmfjstc.lib.zip_archive import ZipArchive
from atmfjstc.lib.zip_archive.cancellation import CancellationToken
from atmfjstc.lib.zip_archive.destinations import MemoryExtractionFolder
from atmfjstc.lib.zip_archive.errors import (
    DecompressionFailedError, DestinationUnavailableError, HeaderMismatchError, InvalidRecordSignatureError,
    NotAZipFileError, OperationCancelledError, TruncatedStreamError, UnsupportedCompressionMethodError,
    UnsupportedZipFeatureError, ZipEntryNotFoundError, ZipExtractionError,
)
from atmfjstc.lib.zip_archive.records import ZipCompressionMethod, ZipEntryFlags, ZipHostOS

from zip_fixtures import (
    CD_COMPRESSED_SIZE, CD_FLAGS, CD_METHOD, CD_UNCOMPRESSED_SIZE, EOCD_CD_OFFSET, EOCD_COMMENT_LENGTH,
    EOCD_DISK_NUMBER, CancelAfterChecks, RecordingFolder, build_zip, patch_central_record, patch_end_record,
)


TEXT = b''.join(f"{i:05d} lorem ipsum dolor sit amet\n".encode('ascii') for i in range(1000))
BINARY = bytes(range(256)) * 4


def _open(data: bytes, **kwargs) -> ZipArchive:
    return ZipArchive(io.BytesIO(data), **kwargs)


def _zip_info(name: str, compress_type: int) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name)
    info.compress_type = compress_type

    return info


class OpenTest(unittest.TestCase):
    def test_central_directory_order(self):
        names = ['zeta.txt', 'alpha/', 'alpha/beta.txt', 'mid.bin']
        archive = _open(build_zip([(name, b'' if name.endswith('/') else TEXT) for name in names]))

        self.assertEqual(archive.filenames, names)
        self.assertEqual(len(archive), 4)
        self.assertEqual([entry.filename for entry in archive], names)
        self.assertEqual([entry.is_directory for entry in archive.entries], [False, True, False, False])

    def test_empty_archive(self):
        archive = _open(build_zip([]))

        self.assertEqual(archive.entries, ())
        self.assertEqual(archive.end_of_central_directory.entry_count_total, 0)

    def test_entry_metadata(self):
        info = zipfile.ZipInfo('docs/readme.txt', date_time=(2020, 5, 17, 13, 45, 30))
        info.compress_type = zipfile.ZIP_DEFLATED
        info.comment = b'the readme'
        archive = _open(build_zip([(info, TEXT)]))

        entry = archive.entries[0]

        self.assertEqual(entry.raw_filename, b'docs/readme.txt')
        self.assertEqual(entry.uncompressed_size, len(TEXT))
        self.assertLess(entry.compressed_size, len(TEXT))
        self.assertEqual(entry.compression_method, ZipCompressionMethod.DEFLATE)
        self.assertEqual(entry.crc32, zlib.crc32(TEXT))
        self.assertEqual(entry.modified, datetime(2020, 5, 17, 13, 45, 30))
        self.assertEqual(entry.comment, 'the readme')
        self.assertIsInstance(entry.host_os, ZipHostOS)
        self.assertFalse(entry.flags & ZipEntryFlags.ENCRYPTED)
        self.assertEqual(entry.content_offset, 30 + len(b'docs/readme.txt'))

    def test_utf8_names(self):
        archive = _open(build_zip([('ünïcödé.txt', b'x')]))

        self.assertEqual(archive.filenames, ['ünïcödé.txt'])
        self.assertEqual(archive.entries[0].raw_filename, 'ünïcödé.txt'.encode('utf-8'))

    def test_from_path(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / 'test.zip'
            path.write_bytes(build_zip([('a.txt', TEXT)]))

            with ZipArchive(path) as archive:
                self.assertEqual(archive.get_file_contents('a.txt'), TEXT)

            self.assertEqual(archive.filenames, ['a.txt'])
            with self.assertRaises(ValueError):
                archive.get_file_contents('a.txt')

    def test_borrowed_stream_stays_open(self):
        stream = io.BytesIO(build_zip([('a.txt', TEXT)]))

        with ZipArchive(stream):
            pass

        self.assertFalse(stream.closed)

    def test_not_a_zip(self):
        for data in [b'', b'short', b'this is definitely not a ZIP file, just some text']:
            with self.subTest(data=data):
                with self.assertRaises(NotAZipFileError):
                    _open(data)

    def test_trailing_comment(self):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w') as zf:
            zf.writestr('a.txt', b'aaa')
            zf.comment = b'archive comment'

        with self.assertRaises(NotAZipFileError):
            _open(buffer.getvalue())

    def test_comment_length_without_comment(self):
        data = patch_end_record(build_zip([('a.txt', b'aaa')]), EOCD_COMMENT_LENGTH, 'H', 5)

        with self.assertRaises(UnsupportedZipFeatureError):
            _open(data)

    def test_multi_disk(self):
        data = patch_end_record(build_zip([('a.txt', b'aaa')]), EOCD_DISK_NUMBER, 'H', 1)

        with self.assertRaises(UnsupportedZipFeatureError):
            _open(data)

    def test_zip64_marker(self):
        data = patch_end_record(build_zip([('a.txt', b'aaa')]), EOCD_CD_OFFSET, 'I', 0xffffffff)

        with self.assertRaises(UnsupportedZipFeatureError):
            _open(data)

    def test_bad_central_directory_offset(self):
        data = patch_end_record(build_zip([('a.txt', b'aaa')]), EOCD_CD_OFFSET, 'I', 0)

        with self.assertRaises(InvalidRecordSignatureError):
            _open(data)

    def test_header_mismatch(self):
        data = bytearray(build_zip([('a.txt', b'aaa'), ('b.txt', b'bbb')]))
        # The first local header's file name starts right after its fixed part
        data[30:35] = b'x.txt'

        with self.assertRaises(HeaderMismatchError) as cm:
            _open(bytes(data))

        self.assertEqual(cm.exception.central_filename, b'a.txt')
        self.assertEqual(cm.exception.local_filename, b'x.txt')

    def test_bad_local_signature(self):
        data = bytearray(build_zip([('a.txt', b'aaa')]))
        data[0:4] = b'XXXX'

        with self.assertRaises(InvalidRecordSignatureError):
            _open(bytes(data))

    def test_closes_owned_file_on_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / 'bad.zip'
            path.write_bytes(b'this is definitely not a ZIP file, just some text')

            with self.assertRaises(NotAZipFileError) as cm:
                ZipArchive(str(path))

            self.assertEqual(cm.exception.file_name, str(path))


class OpenCancellationTest(unittest.TestCase):
    def test_cancelled_before(self):
        token = CancellationToken()
        token.cancel()

        self.assertIsNone(ZipArchive.open(io.BytesIO(build_zip([('a.txt', b'a')])), token))

    def test_cancelled_midway(self):
        data = build_zip([(f"file{i}.txt", TEXT) for i in range(5)])

        # One check after the end record, then one after each entry
        self.assertIsNone(ZipArchive.open(io.BytesIO(data), CancelAfterChecks(2)))

    def test_constructor_raises(self):
        data = build_zip([(f"file{i}.txt", TEXT) for i in range(5)])

        with self.assertRaises(OperationCancelledError):
            ZipArchive(io.BytesIO(data), CancelAfterChecks(2))

    def test_not_cancelled(self):
        data = build_zip([(f"file{i}.txt", TEXT) for i in range(5)])

        archive = ZipArchive.open(io.BytesIO(data), CancelAfterChecks(6))

        self.assertEqual(len(archive), 5)


class GetFileContentsTest(unittest.TestCase):
    def test_stored(self):
        archive = _open(build_zip([('a.bin', BINARY)], compression=zipfile.ZIP_STORED))

        self.assertEqual(archive.entries[0].compression_method, ZipCompressionMethod.STORE)
        self.assertEqual(archive.get_file_contents('a.bin'), BINARY)

    def test_deflated(self):
        archive = _open(build_zip([('a.txt', TEXT), ('b.bin', BINARY)]))

        self.assertEqual(archive.get_file_contents('a.txt'), TEXT)
        self.assertEqual(archive.get_file_contents('b.bin'), BINARY)

    def test_empty_entry(self):
        archive = _open(build_zip([('empty.txt', b'')]))

        self.assertEqual(archive.get_file_contents('empty.txt'), b'')

    def test_absent(self):
        archive = _open(build_zip([('a.txt', TEXT)]))

        self.assertIsNone(archive.get_file_contents('b.txt'))
        self.assertIsNone(archive.get_file_contents('A.TXT'))

    def test_first_of_duplicates(self):
        with self.assertWarns(UserWarning):
            data = build_zip([('dup.txt', b'first'), ('dup.txt', b'second')])
        archive = _open(data)

        self.assertEqual(archive.get_file_contents('dup.txt'), b'first')

    def test_declared_size_too_small(self):
        data = patch_central_record(build_zip([('a.txt', TEXT)]), 0, CD_UNCOMPRESSED_SIZE, 'I', len(TEXT) - 1)

        with self.assertRaises(DecompressionFailedError) as cm:
            _open(data).get_file_contents('a.txt')

        self.assertEqual(cm.exception.entry_name, 'a.txt')

    def test_declared_size_too_large(self):
        data = patch_central_record(build_zip([('a.txt', TEXT)]), 0, CD_UNCOMPRESSED_SIZE, 'I', len(TEXT) + 1)

        with self.assertRaises(DecompressionFailedError):
            _open(data).get_file_contents('a.txt')

    def test_data_past_end(self):
        data = build_zip([('a.bin', BINARY)], compression=zipfile.ZIP_STORED)
        data = patch_central_record(data, 0, CD_COMPRESSED_SIZE, 'I', 100000)

        with self.assertRaises(TruncatedStreamError):
            _open(data).get_file_contents('a.bin')

    def test_unsupported_method(self):
        data = patch_central_record(build_zip([('a.txt', TEXT)]), 0, CD_METHOD, 'H', ZipCompressionMethod.BZIP2)
        archive = _open(data)

        self.assertEqual(archive.entries[0].compression_method, ZipCompressionMethod.BZIP2)

        with self.assertRaises(UnsupportedCompressionMethodError) as cm:
            archive.get_file_contents('a.txt')

        self.assertEqual(cm.exception.method, ZipCompressionMethod.BZIP2)

    def test_encrypted(self):
        data = patch_central_record(build_zip([('a.txt', TEXT)]), 0, CD_FLAGS, 'H', ZipEntryFlags.ENCRYPTED)

        with self.assertRaises(UnsupportedZipFeatureError):
            _open(data).get_file_contents('a.txt')

    def test_cancelled(self):
        token = CancellationToken()
        token.cancel()

        with self.assertRaises(OperationCancelledError):
            _open(build_zip([('a.txt', TEXT)])).get_file_contents('a.txt', token)


class ExtractFileTest(unittest.TestCase):
    def test_to_bytearray(self):
        archive = _open(build_zip([('a.txt', TEXT)]))
        buffer = bytearray(b'junk')

        archive.extract_file('a.txt', buffer, chunk_size=100)

        self.assertEqual(buffer, TEXT)

    def test_stored_to_stream(self):
        archive = _open(build_zip([('a.bin', BINARY)], compression=zipfile.ZIP_STORED))
        stream = io.BytesIO()

        archive.extract_file('a.bin', stream, chunk_size=7)

        self.assertEqual(stream.getvalue(), BINARY)

    def test_to_path(self):
        archive = _open(build_zip([('a.txt', TEXT)]))

        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / 'out.txt'

            archive.extract_file('a.txt', path)

            self.assertEqual(path.read_bytes(), TEXT)

    def test_absent(self):
        archive = _open(build_zip([('a.txt', TEXT)]))

        with self.assertRaises(ZipEntryNotFoundError) as cm:
            archive.extract_file('b.txt', bytearray())

        self.assertEqual(cm.exception.entry_name, 'b.txt')

    def test_destination_unavailable(self):
        archive = _open(build_zip([('a.txt', TEXT)]))

        with tempfile.TemporaryDirectory() as temp_dir:
            with self.assertRaises(DestinationUnavailableError):
                archive.extract_file('a.txt', Path(temp_dir) / 'missing' / 'out.txt')

    def test_cancelled_midway_leaves_partial_data(self):
        archive = _open(build_zip([('a.bin', BINARY)], compression=zipfile.ZIP_STORED))
        buffer = bytearray()

        with self.assertRaises(OperationCancelledError):
            archive.extract_file('a.bin', buffer, CancelAfterChecks(3), chunk_size=10)

        self.assertEqual(buffer, BINARY[:30])

    def test_stream_keeps_earlier_content(self):
        archive = _open(build_zip([('a.bin', BINARY)], compression=zipfile.ZIP_STORED))
        stream = io.BytesIO(b'header:')
        stream.seek(0, io.SEEK_END)

        archive.extract_file('a.bin', stream, chunk_size=100)

        self.assertEqual(stream.getvalue(), b'header:' + BINARY)

    def test_unsupported_method_leaves_file_untouched(self):
        data = patch_central_record(build_zip([('a.txt', TEXT)]), 0, CD_METHOD, 'H', ZipCompressionMethod.LZMA)
        archive = _open(data)

        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / 'out.txt'
            path.write_bytes(b'precious')

            with self.assertRaises(UnsupportedCompressionMethodError):
                archive.extract_file('a.txt', path)

            self.assertEqual(path.read_bytes(), b'precious')

    def test_encrypted_leaves_buffer_untouched(self):
        data = patch_central_record(build_zip([('a.txt', TEXT)]), 0, CD_FLAGS, 'H', ZipEntryFlags.ENCRYPTED)
        archive = _open(data)
        buffer = bytearray(b'precious')

        with self.assertRaises(UnsupportedZipFeatureError):
            archive.extract_file('a.txt', buffer)

        self.assertEqual(buffer, b'precious')

    def test_to_folder(self):
        archive = _open(build_zip([('a/b/c.txt', TEXT), ('d.txt', b'ddd')]))
        folder = MemoryExtractionFolder()

        archive.extract_file_to_folder('a/b/c.txt', folder)

        self.assertEqual(folder.list_files(), ['a/b/c.txt'])
        self.assertEqual(folder.read_file('a/b/c.txt'), TEXT)


class ExtractAllTest(unittest.TestCase):
    def test_folders_created_once(self):
        archive = _open(build_zip([('a/b/c.txt', b'ccc'), ('a/b/d.txt', b'ddd')]))
        folder = RecordingFolder.new_root()

        archive.extract_all(folder, max_workers=2)

        self.assertEqual(folder.created, ['a/', 'a/b/'])
        self.assertEqual(folder.inner.list_files(), ['a/b/c.txt', 'a/b/d.txt'])
        self.assertEqual(folder.inner.read_file('a/b/c.txt'), b'ccc')
        self.assertEqual(folder.inner.read_file('a/b/d.txt'), b'ddd')

    def test_directory_entries_skipped(self):
        archive = _open(build_zip([('empty_dir/', b''), ('x/', b''), ('x/y.txt', b'yyy')]))
        folder = MemoryExtractionFolder()

        archive.extract_all(folder)

        self.assertEqual(folder.list_files(), ['x/y.txt'])

    def test_to_filesystem(self):
        files = [('top.txt', TEXT), ('sub/one.bin', BINARY), ('sub/deeper/two.txt', b'two')]
        archive = _open(build_zip(files))

        with tempfile.TemporaryDirectory() as temp_dir:
            archive.extract_all(temp_dir)

            for name, data in files:
                self.assertEqual((Path(temp_dir) / name).read_bytes(), data)

    def test_failure_does_not_stop_siblings(self):
        files = [('good1.txt', TEXT), ('bad.txt', TEXT), ('good2.txt', b'good')]
        data = patch_central_record(build_zip(files), 1, CD_METHOD, 'H', ZipCompressionMethod.LZMA)
        archive = _open(data)
        folder = MemoryExtractionFolder()

        with self.assertRaises(ZipExtractionError) as cm:
            archive.extract_all(folder)

        self.assertEqual([name for name, _ in cm.exception.failures], ['bad.txt'])
        self.assertIsInstance(cm.exception.failures[0][1], UnsupportedCompressionMethodError)
        self.assertEqual(folder.read_file('good1.txt'), TEXT)
        self.assertEqual(folder.read_file('good2.txt'), b'good')

    def test_unsafe_path(self):
        archive = _open(build_zip([('../evil.txt', b'evil'), ('fine.txt', b'fine')]))
        folder = MemoryExtractionFolder()

        with self.assertRaises(ZipExtractionError) as cm:
            archive.extract_all(folder)

        self.assertIsInstance(cm.exception.failures[0][1], DestinationUnavailableError)
        self.assertEqual(folder.list_files(), ['fine.txt'])

    def test_cancelled(self):
        token = CancellationToken()
        token.cancel()
        archive = _open(build_zip([('a.txt', TEXT), ('b.txt', TEXT)]))
        folder = MemoryExtractionFolder()

        with self.assertRaises(OperationCancelledError):
            archive.extract_all(folder, token)

    def test_unsupported_entry_does_not_clobber_existing_file(self):
        files = [('good.txt', b'good'), ('bad.txt', TEXT)]
        data = patch_central_record(build_zip(files), 1, CD_METHOD, 'H', ZipCompressionMethod.LZMA)
        archive = _open(data)

        with tempfile.TemporaryDirectory() as temp_dir:
            (Path(temp_dir) / 'bad.txt').write_bytes(b'precious')

            with self.assertRaises(ZipExtractionError):
                archive.extract_all(temp_dir)

            self.assertEqual((Path(temp_dir) / 'good.txt').read_bytes(), b'good')
            self.assertEqual((Path(temp_dir) / 'bad.txt').read_bytes(), b'precious')

    def test_cancelled_midway(self):
        files = [
            (_zip_info('a.txt', zipfile.ZIP_DEFLATED), b'x' * 50),
            (_zip_info('b.bin', zipfile.ZIP_STORED), BINARY),
            (_zip_info('c.bin', zipfile.ZIP_STORED), BINARY),
            (_zip_info('d.txt', zipfile.ZIP_DEFLATED), TEXT),
        ]
        archive = _open(build_zip(files))
        folder = MemoryExtractionFolder()

        # a.txt takes 3 checks and b.bin 11, so c.bin gets 3 chunks in before the token trips
        with self.assertRaises(OperationCancelledError):
            archive.extract_all(folder, CancelAfterChecks(17), max_workers=1, chunk_size=100)

        self.assertEqual(folder.read_file('a.txt'), b'x' * 50)
        self.assertEqual(folder.read_file('b.bin'), BINARY)
        self.assertEqual(folder.read_file('c.bin'), BINARY[:300])
        self.assertEqual(folder.read_file('d.txt'), b'')

    def test_duplicate_names_keep_one_complete_copy(self):
        with self.assertWarns(UserWarning):
            data = build_zip([('dup.bin', BINARY), ('dup.bin', TEXT)], compression=zipfile.ZIP_STORED)
        archive = _open(data)
        folder = MemoryExtractionFolder()

        archive.extract_all(folder, max_workers=2, chunk_size=16)

        self.assertEqual(folder.list_files(), ['dup.bin'])
        self.assertIn(folder.read_file('dup.bin'), (BINARY, TEXT))
