# ============================================================================
# apps/reconcile/parser.py - Read extension and trunk records back out of pjsip.conf
# ============================================================================

import re
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from config import SIP_REALM
from .document import SECTION_HEADER, split_option
from .records import ExtensionRecord, TrunkRecord, md5_credential

logger = logging.getLogger(__name__)

TRUNK_NAME = re.compile(r'^[a-zA-Z0-9_-]+$')
QUOTED_CALLERID = re.compile(r'^\s*"([^"]*)"\s*<[^>]*>\s*$')
CALLERID = re.compile(r'^\s*"?([^"<]*?)"?\s*(?:<[^>]*>)?\s*$')
CONTACT = re.compile(r'^sips?:(?:[^@]+@)?([^:;>]+)(?::(\d+))?')
TRUE_VALUES = ("yes", "true", "on", "1")


class SectionState(str, Enum):
    ENDPOINT = "endpoint"
    AUTH = "auth"
    AOR = "aor"
    IDENTIFY = "identify"
    IGNORED = "ignored"


SUFFIX_STATES = (
    ("-auth", SectionState.AUTH),
    ("-aor", SectionState.AOR),
    ("-identify", SectionState.IDENTIFY),
)
TYPE_STATES = {
    "endpoint": SectionState.ENDPOINT,
    "auth": SectionState.AUTH,
    "aor": SectionState.AOR,
    "identify": SectionState.IDENTIFY,
}


class _Draft:
    """Fields collected so far for one identity"""

    def __init__(self, identity: str):
        self.identity = identity
        self.fields: Dict[str, object] = {}
        self.codecs: Optional[List[str]] = None
        self.password: Optional[str] = None
        self.realm: Optional[str] = None
        self.auth_refs: List[str] = []
        self.aor_refs: List[str] = []
        self.materialized = False


class _OpenSection:
    def __init__(self, name: str, identity: Optional[str], state: SectionState, suffixed: bool):
        self.name = name
        self.identity = identity
        self.state = state
        self.suffixed = suffixed
        self.explicit_type = False
        self.options: List[Tuple[str, str]] = []


class PjsipParser:
    """Line driven state machine over pjsip.conf.

    States: none, endpoint, auth, aor, identify, ignored. A `[name]` header
    opens a section whose state comes from the naming convention (bare
    identity is an endpoint, `-auth`/`-aor`/`-identify` suffixes select the
    matching type); a `type=` option overrides it. Options of a section are
    applied when the section closes, so their order inside the section does
    not matter. Lines that fit none of this are skipped; parsing never fails.
    """

    def __init__(self):
        self.drafts: Dict[str, _Draft] = {}
        self.order: List[str] = []
        self.named: Dict[str, _OpenSection] = {}
        self.current: Optional[_OpenSection] = None

    # identity rules -----------------------------------------------------

    def is_identity(self, name: str) -> bool:
        raise NotImplementedError

    def needs_explicit_type(self) -> bool:
        return False

    # state machine ------------------------------------------------------

    def parse(self, text: str):
        for line in text.splitlines():
            self.feed(decode_line(line))
        self.close_section()
        self.resolve_references()
        return self.records()

    def feed(self, line: str) -> None:
        stripped = line.strip()
        if not stripped or stripped.startswith(';') or stripped.startswith('#'):
            return

        header = SECTION_HEADER.match(stripped)
        if header:
            self.close_section()
            self.open_section(header.group(1).strip())
            return

        if self.current is None:
            return
        option = split_option(stripped)
        if option is None:
            return
        key, value = option
        if key == "type":
            self.transition(value.strip().lower())
        else:
            self.current.options.append((key, value))

    def open_section(self, name: str) -> None:
        for suffix, state in SUFFIX_STATES:
            base = name[:-len(suffix)]
            if name.endswith(suffix) and base and self.is_identity(base):
                self.current = _OpenSection(name, base, state, suffixed=True)
                return
        if self.is_identity(name):
            self.current = _OpenSection(name, name, SectionState.ENDPOINT, suffixed=False)
        else:
            self.current = _OpenSection(name, None, SectionState.IGNORED, suffixed=False)

    def transition(self, section_type: str) -> None:
        section = self.current
        section.explicit_type = True
        state = TYPE_STATES.get(section_type, SectionState.IGNORED)
        if state is SectionState.ENDPOINT and section.suffixed:
            state = SectionState.IGNORED
        section.state = state

    def close_section(self) -> None:
        section = self.current
        self.current = None
        if section is None:
            return

        if section.state is SectionState.IGNORED:
            return
        if not section.suffixed and section.state is not SectionState.ENDPOINT:
            # typed section that an endpoint may reference by name
            self.named[section.name] = section
        if section.identity is None:
            return

        if section.state is SectionState.ENDPOINT and self.needs_explicit_type() and not section.explicit_type:
            return

        draft = self.draft(section.identity)
        self.apply(draft, section)
        if section.state is SectionState.ENDPOINT and not draft.materialized:
            draft.materialized = True
            self.order.append(section.identity)

    def draft(self, identity: str) -> _Draft:
        if identity not in self.drafts:
            self.drafts[identity] = _Draft(identity)
        return self.drafts[identity]

    def apply(self, draft: _Draft, section: _OpenSection) -> None:
        table = self.handlers().get(section.state, {})
        for key, value in section.options:
            handler = table.get(key)
            if handler is None:
                continue
            try:
                handler(draft, value)
            except ValueError:
                logger.debug(f"Ignoring unparseable {key}={value} in [{section.name}]")

    def resolve_references(self) -> None:
        """Attach auth, aor and identify sections named by an endpoint"""
        for identity in self.order:
            draft = self.drafts[identity]
            for name in draft.auth_refs + draft.aor_refs:
                section = self.named.get(name)
                if section is not None:
                    self.apply(draft, section)
        for section in self.named.values():
            if section.state is not SectionState.IDENTIFY:
                continue
            endpoint = dict(section.options).get("endpoint")
            if endpoint in self.drafts and self.drafts[endpoint].materialized:
                self.apply(self.drafts[endpoint], section)

    def handlers(self) -> Dict[SectionState, Dict[str, Callable[[_Draft, str], None]]]:
        raise NotImplementedError

    def records(self):
        raise NotImplementedError

    # shared option handlers ---------------------------------------------

    @staticmethod
    def set_field(field: str, convert: Callable = str) -> Callable[[_Draft, str], None]:
        def handler(draft: _Draft, value: str) -> None:
            draft.fields[field] = convert(value)
        return handler

    @staticmethod
    def on_disallow(draft: _Draft, value: str) -> None:
        if "all" in [codec.strip() for codec in value.split(",")]:
            draft.codecs = []

    @staticmethod
    def on_allow(draft: _Draft, value: str) -> None:
        if draft.codecs is None:
            draft.codecs = []
        for codec in value.split(","):
            codec = codec.strip()
            if codec and codec != "all" and codec not in draft.codecs:
                draft.codecs.append(codec)

    @staticmethod
    def on_transport(draft: _Draft, value: str) -> None:
        value = value.strip()
        if value.startswith("transport-"):
            value = value[len("transport-"):]
        draft.fields["transport"] = value

    @staticmethod
    def on_auth_ref(draft: _Draft, value: str) -> None:
        draft.auth_refs.extend(ref.strip() for ref in value.split(",") if ref.strip())

    @staticmethod
    def on_aors_ref(draft: _Draft, value: str) -> None:
        draft.aor_refs.extend(ref.strip() for ref in value.split(",") if ref.strip())

    @staticmethod
    def on_password(draft: _Draft, value: str) -> None:
        draft.password = value

    @staticmethod
    def on_realm(draft: _Draft, value: str) -> None:
        draft.realm = value

    def _record_kwargs(self, draft: _Draft) -> Dict[str, object]:
        kwargs = dict(draft.fields)
        if draft.codecs:
            kwargs["codecs"] = draft.codecs
        return kwargs


def parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


def decode_line(line: str) -> str:
    """Re-read a line holding undecodable bytes as Latin-1"""
    raw = line.encode("utf-8", "surrogateescape")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def parse_callerid(value: str) -> Optional[str]:
    match = QUOTED_CALLERID.match(value) or CALLERID.match(value)
    name = match.group(1).strip() if match else value.strip()
    return name or None


class ExtensionParser(PjsipParser):
    """Numeric sections become extension records"""

    def __init__(self, realm: str = SIP_REALM):
        super().__init__()
        self.realm = realm

    def is_identity(self, name: str) -> bool:
        return name.isdigit()

    def handlers(self):
        return {
            SectionState.ENDPOINT: {
                "context": self.set_field("context"),
                "disallow": self.on_disallow,
                "allow": self.on_allow,
                "transport": self.on_transport,
                "callerid": self.set_field("name", parse_callerid),
                "direct_media": self.set_field("direct_media", parse_bool),
                "auth": self.on_auth_ref,
                "aors": self.on_aors_ref,
            },
            SectionState.AUTH: {
                "md5_cred": self.set_field("md5_cred"),
                "password": self.on_password,
                "realm": self.on_realm,
            },
            SectionState.AOR: {
                "max_contacts": self.set_field("max_contacts", int),
                "qualify_frequency": self.set_field("qualify_frequency", int),
            },
        }

    def records(self) -> List[ExtensionRecord]:
        records = []
        for identity in self.order:
            draft = self.drafts[identity]
            kwargs = self._record_kwargs(draft)
            if "md5_cred" not in kwargs and draft.password is not None:
                kwargs["md5_cred"] = md5_credential(identity, draft.realm or self.realm, draft.password)
            records.append(ExtensionRecord(number=identity, **kwargs))
        return records


class TrunkParser(PjsipParser):
    """Named sections with an explicit `type=endpoint` become trunk records"""

    def is_identity(self, name: str) -> bool:
        return bool(TRUNK_NAME.match(name)) and not name.isdigit() and not name.startswith("transport-")

    def needs_explicit_type(self) -> bool:
        return True

    @staticmethod
    def on_contact(draft: _Draft, value: str) -> None:
        match = CONTACT.match(value.strip())
        if not match:
            raise ValueError(value)
        draft.fields["host"] = match.group(1)
        if match.group(2):
            draft.fields["port"] = int(match.group(2))

    @staticmethod
    def on_match(draft: _Draft, value: str) -> None:
        draft.fields["match_inbound"] = True
        draft.fields.setdefault("host", value.split(",")[0].split("/")[0].strip())

    def handlers(self):
        return {
            SectionState.ENDPOINT: {
                "context": self.set_field("context"),
                "disallow": self.on_disallow,
                "allow": self.on_allow,
                "transport": self.on_transport,
                "from_domain": self.set_field("from_domain"),
                "from_user": self.set_field("from_user"),
                "outbound_auth": self.on_auth_ref,
                "aors": self.on_aors_ref,
            },
            SectionState.AUTH: {
                "username": self.set_field("username"),
                "password": self.set_field("secret"),
            },
            SectionState.AOR: {
                "contact": self.on_contact,
                "qualify_frequency": self.set_field("qualify_frequency", int),
            },
            SectionState.IDENTIFY: {
                "match": self.on_match,
            },
        }

    def records(self) -> List[TrunkRecord]:
        records = []
        for identity in self.order:
            kwargs = self._record_kwargs(self.drafts[identity])
            kwargs.setdefault("match_inbound", False)
            records.append(TrunkRecord(name=identity, **kwargs))
        return records


def parse_extensions(text: str, realm: str = SIP_REALM) -> List[ExtensionRecord]:
    return ExtensionParser(realm).parse(text)


def parse_trunks(text: str) -> List[TrunkRecord]:
    return TrunkParser().parse(text)
