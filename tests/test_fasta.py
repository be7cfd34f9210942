from io import BytesIO

import pytest

from allvsall import EmptyInputWarning, UnknownResidueWarning
from allvsall.engines.pairwise import ScoreMatrix
from allvsall.io import read_records, ParserError, SeqIOError
from allvsall.io.seq import FastaReader


FASTA = b""">seq1 first protein
MKTAY
IAKQR
>seq2
MSK

>empty
>seq3 third one
M S K
"""


class TinyChunkReader(FastaReader):
    _CHUNK_SIZE = 3


class TestFastaReader:
    def test_records(self):
        records = list(FastaReader(BytesIO(FASTA)))
        assert [r.id for r in records] == [b'seq1', b'seq2', b'seq3']
        assert [r.residues for r in records] == [b'MKTAYIAKQR', b'MSK', b'MSK']
        assert records[0].description == b'first protein'
        assert records[1].description == b''

    def test_chunk_boundaries(self):
        assert list(TinyChunkReader(BytesIO(FASTA))) == list(FastaReader(BytesIO(FASTA)))

    def test_min_seq_length(self):
        records = list(FastaReader(BytesIO(FASTA), min_seq_length=4))
        assert [r.id for r in records] == [b'seq1']

    def test_empty_records_kept_when_allowed(self):
        records = list(FastaReader(BytesIO(FASTA), min_seq_length=0))
        assert [r.id for r in records] == [b'seq1', b'seq2', b'empty', b'seq3']

    def test_crlf(self):
        records = list(FastaReader(BytesIO(b'>a\r\nMS\r\nK\r\n>b\r\nW\r\n')))
        assert [(r.id, r.residues) for r in records] == [(b'a', b'MSK'), (b'b', b'W')]

    def test_leading_comments(self):
        records = list(FastaReader(BytesIO(b'\n;comment\n>a\nMSK\n')))
        assert records[0].residues == b'MSK'

    def test_data_before_header(self):
        with pytest.raises(ParserError):
            list(FastaReader(BytesIO(b'MSK\n>a\nMSK\n')))

    def test_next(self):
        reader = FastaReader(BytesIO(FASTA))
        assert next(reader).id == b'seq1'
        assert next(reader).id == b'seq2'

    def test_sniff(self):
        assert FastaReader.sniff(b'>a\nMSK')
        assert not FastaReader.sniff(b'ID   a')


class TestReadRecords:
    def test_uppercases(self, tmp_path):
        path = tmp_path / 'in.fasta'
        path.write_bytes(b'>a\nmsk\n>b\nMaK\n')
        records = read_records(path)
        assert [r.residues for r in records] == [b'MSK', b'MAK']

    def test_missing_file(self, tmp_path):
        with pytest.raises(SeqIOError):
            read_records(tmp_path / 'missing.fasta')

    def test_empty_file_warns(self, tmp_path):
        path = tmp_path / 'empty.fasta'
        path.write_bytes(b'')
        with pytest.warns(EmptyInputWarning):
            assert read_records(path) == []

    def test_unknown_residues_warn(self, tmp_path):
        path = tmp_path / 'in.fasta'
        path.write_bytes(b'>a\nMXK\n')
        with pytest.warns(UnknownResidueWarning, match='X'):
            records = read_records(path, ScoreMatrix.blosum62())
        assert records[0].residues == b'MXK'
