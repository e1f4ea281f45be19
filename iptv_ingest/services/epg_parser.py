"""
EPG Parser Service.
Streams XMLTV documents into EPG channels and programs without building the tree.
"""
import re
import xml.etree.ElementTree as ET
import zlib
import logging
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Iterable, Iterator, Optional
from uuid import uuid4

from iptv_ingest.models.epg import EPGChannel, EPGParseResult, EPGProgram
from iptv_ingest.services.errors import CancelFlag

logger = logging.getLogger(__name__)

# XMLTV timestamps: yyyyMMddHHmmss +HHMM, fixed width
XMLTV_TIME_PATTERN = re.compile(r'^\d{14} [+-]\d{4}$')
XMLTV_TIME_FORMAT = '%Y%m%d%H%M%S %z'
GZIP_MAGIC = b'\x1f\x8b'


def parse_xmltv_time(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an XMLTV timestamp.
    Format: 20251212040000 +0000. Anything else returns None.
    """
    if not value or not XMLTV_TIME_PATTERN.match(value):
        return None
    try:
        return datetime.strptime(value, XMLTV_TIME_FORMAT)
    except ValueError:
        return None


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


class XMLTVStateMachine:
    """Builds channels and programs from start/end element events."""

    def __init__(self):
        self.channels: list[EPGChannel] = []
        self.programs: list[EPGProgram] = []
        self.dropped = 0
        self._channel: Optional[dict] = None
        self._programme: Optional[dict] = None

    def start(self, elem: ET.Element):
        tag = _local_name(elem.tag)
        if tag == 'channel':
            self._channel = {
                'id': elem.get('id') or str(uuid4()),
                'display_name': '',
                'icon_url': None,
            }
        elif tag == 'programme':
            self._programme = {
                'channel_id': elem.get('channel') or None,
                'start': parse_xmltv_time(elem.get('start')),
                'stop': parse_xmltv_time(elem.get('stop')),
                'title': None,
                'desc': None,
                'category': None,
            }

    def end(self, elem: ET.Element):
        tag = _local_name(elem.tag)
        text = (elem.text or '').strip()

        if tag == 'channel':
            if self._channel is not None:
                self.channels.append(EPGChannel(**self._channel))
            self._channel = None
        elif tag == 'programme':
            self._finish_programme()
            self._programme = None
        elif not text:
            return
        elif self._channel is not None:
            if tag == 'display-name' and not self._channel['display_name']:
                self._channel['display_name'] = text
            elif tag == 'icon':
                # Icon comes from character data; the src attribute is not read
                self._channel['icon_url'] = text
        elif self._programme is not None:
            if tag in ('title', 'desc') and not self._programme[tag]:
                self._programme[tag] = text
            elif tag == 'category':
                existing = self._programme['category']
                self._programme['category'] = f"{existing}, {text}" if existing else text

    def _finish_programme(self):
        prog = self._programme
        if prog is None:
            return
        if not (prog['channel_id'] and prog['start'] and prog['stop'] and prog['title']):
            self.dropped += 1
            return

        start = prog['start']
        self.programs.append(EPGProgram(
            id=f"{prog['channel_id']}-{int(start.timestamp())}",
            channel_id=prog['channel_id'],
            title=prog['title'],
            description=prog['desc'],
            category=prog['category'],
            start=start,
            stop=prog['stop'],
        ))

    def result(self, error: Optional[Exception] = None) -> EPGParseResult:
        return EPGParseResult(
            channels=self.channels,
            programs=self.programs,
            error=str(error) if error is not None else None,
        )


class XMLTVTokenStream:
    """
    Incremental XMLTV tokenizer.

    Bytes go in through feed(); (event, element) pairs come out. Finished
    <channel> and <programme> elements are cleared and detached from their
    parent so memory stays flat on large guides. Gzip input is inflated on
    the fly.
    """

    def __init__(self):
        self._parser = ET.XMLPullParser(['start', 'end'])
        self._stack: list[ET.Element] = []
        self._inflater = None
        self._sniffed = False
        self._head = b''
        self.error: Optional[Exception] = None

    def feed(self, chunk: bytes) -> Iterator[tuple[str, ET.Element]]:
        if self.error is not None or not chunk:
            return
        if not self._sniffed:
            # The magic number may be split across network chunks
            self._head += chunk
            if len(self._head) < len(GZIP_MAGIC):
                return
            chunk = self._sniff()
        yield from self._feed_raw(chunk)

    def _sniff(self) -> bytes:
        self._sniffed = True
        head, self._head = self._head, b''
        if head[:2] == GZIP_MAGIC:
            self._inflater = zlib.decompressobj(16 + zlib.MAX_WBITS)
        return head

    def _feed_raw(self, chunk: bytes) -> Iterator[tuple[str, ET.Element]]:
        if self._inflater is not None:
            try:
                chunk = self._inflater.decompress(chunk)
            except zlib.error as e:
                self.error = e
                return
        yield from self._drain(lambda: self._parser.feed(chunk))

    def close(self) -> Iterator[tuple[str, ET.Element]]:
        if self.error is not None:
            return
        if not self._sniffed and self._head:
            yield from self._feed_raw(self._sniff())
            if self.error is not None:
                return
        if self._inflater is not None:
            tail = self._inflater.flush()
            if tail:
                yield from self._drain(lambda: self._parser.feed(tail))
                if self.error is not None:
                    return
        yield from self._drain(self._parser.close)

    def _drain(self, step) -> Iterator[tuple[str, ET.Element]]:
        try:
            step()
        except ET.ParseError as e:
            self.error = e
            return

        events = self._parser.read_events()
        while True:
            # Syntax errors surface from read_events() after the good events
            try:
                event, elem = next(events)
            except StopIteration:
                return
            except ET.ParseError as e:
                self.error = e
                return

            if event == 'start':
                self._stack.append(elem)
                yield event, elem
                continue

            if self._stack:
                self._stack.pop()
            yield event, elem

            if _local_name(elem.tag) in ('channel', 'programme'):
                elem.clear()
                parent = self._stack[-1] if self._stack else None
                if parent is not None:
                    parent.remove(elem)


class EPGParser:
    """Parse XMLTV format EPG data."""

    def __init__(self, chunk_size: int = 65536):
        self.chunk_size = chunk_size

    @staticmethod
    def _run(machine: XMLTVStateMachine, events: Iterable[tuple[str, ET.Element]]):
        for event, elem in events:
            if event == 'start':
                machine.start(elem)
            else:
                machine.end(elem)

    def _finish(self, stream: XMLTVTokenStream, machine: XMLTVStateMachine, source: str) -> EPGParseResult:
        self._run(machine, stream.close())
        if stream.error is not None:
            logger.warning(f"Malformed XMLTV in {source}, keeping what was parsed: {stream.error}")
        logger.info(
            f"Parsed {len(machine.channels)} channels and {len(machine.programs)} programs "
            f"from {source} ({machine.dropped} incomplete programs dropped)"
        )
        return machine.result(stream.error)

    def parse_bytes(self, data: bytes, cancel: Optional[CancelFlag] = None) -> EPGParseResult:
        """Parse an in-memory XMLTV document."""
        stream = XMLTVTokenStream()
        machine = XMLTVStateMachine()
        for offset in range(0, len(data), self.chunk_size):
            if cancel is not None:
                cancel.raise_if_cancelled()
            self._run(machine, stream.feed(data[offset:offset + self.chunk_size]))
        return self._finish(stream, machine, 'bytes')

    def parse_file(self, filepath: str | Path, cancel: Optional[CancelFlag] = None) -> EPGParseResult:
        """
        Parse an XMLTV file (plain or gzip) from disk.

        Args:
            filepath: Path to the XMLTV file

        Returns:
            Parsed channels and programs
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"EPG file not found: {filepath}")

        logger.info(f"Parsing EPG file: {filepath}")
        stream = XMLTVTokenStream()
        machine = XMLTVStateMachine()
        with open(filepath, 'rb') as f:
            while True:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                self._run(machine, stream.feed(chunk))
        return self._finish(stream, machine, str(filepath))

    async def parse_stream(
        self,
        chunks: AsyncIterator[bytes],
        source: str = 'stream',
        cancel: Optional[CancelFlag] = None,
    ) -> EPGParseResult:
        """Parse XMLTV arriving as an async byte stream (e.g. an HTTP body)."""
        stream = XMLTVTokenStream()
        machine = XMLTVStateMachine()
        async for chunk in chunks:
            if cancel is not None:
                cancel.raise_if_cancelled()
            self._run(machine, stream.feed(chunk))
        return self._finish(stream, machine, source)
