# ============================================================================
# apps/reconcile/generator.py - Render entities into Asterisk configuration text
# ============================================================================

import re
from typing import Dict, Iterable, List, Optional, Tuple

from config import SIP_REALM, OUTBOUND_ROUTES_CONTEXT
from shared.exceptions import ValidationError
from .records import (
    ExtensionRecord, TrunkRecord, DialplanRuleRecord, PJSIP_DEFAULTS
)

EXTENSION_LABEL = "Extension {}"
TRUNK_LABEL = "Trunk {}"
TRANSPORTS_LABEL = "Transports"
DIALPLAN_RULES_LABEL = "Dialplan Rules"
OUTBOUND_ROUTES_LABEL = "Outbound Routes"

TRUNK_NAME = re.compile(r'^[a-zA-Z0-9_-]+$')
DIAL_PREFIX = re.compile(r'^[0-9]+$')
VERBOSE_RULE_TYPES = ("pattern", "internal")

Options = List[Tuple[str, str]]


def extension_label(number: str) -> str:
    return EXTENSION_LABEL.format(number)


def trunk_label(name: str) -> str:
    return TRUNK_LABEL.format(name)


def transport_name(transport: str) -> str:
    return f"transport-{transport}"


def yes_no(value: bool) -> str:
    return "yes" if value else "no"


def render_section(name: str, options: Options) -> List[str]:
    return [f"[{name}]"] + [f"{key}={value}" for key, value in options]


def _with_static(options: Options, static: Optional[Dict]) -> Options:
    present = {key for key, _ in options}
    for key, value in (static or {}).items():
        if key not in present:
            options.append((key, str(value)))
    return options


def _join_sections(sections: Iterable[List[str]]) -> str:
    blocks = ["\n".join(lines) for lines in sections]
    return "\n\n".join(blocks) + "\n"


def _codec_options(codecs: List[str]) -> Options:
    return [("disallow", "all")] + [("allow", codec) for codec in codecs]


# ----------------------------------------------------------------------------
# pjsip.conf
# ----------------------------------------------------------------------------

def extension_sections(extension: ExtensionRecord, realm: str = SIP_REALM) -> str:
    """Endpoint, auth and aor sections for one extension"""
    if not extension.number.isdigit():
        raise ValidationError(f"Extension number '{extension.number}' must be numeric")

    static = PJSIP_DEFAULTS["extension"]["static"]
    number = extension.number

    endpoint: Options = [("type", "endpoint"), ("context", extension.context)]
    endpoint += _codec_options(extension.codecs)
    endpoint.append(("transport", transport_name(extension.transport)))
    if extension.md5_cred:
        endpoint.append(("auth", f"{number}-auth"))
    endpoint.append(("aors", number))
    endpoint.append(("direct_media", yes_no(extension.direct_media)))
    if extension.name:
        display = extension.name.replace('"', '')
        endpoint.append(("callerid", f'"{display}" <{number}>'))
    endpoint.append(("subscribe_context", extension.context))
    sections = [render_section(number, _with_static(endpoint, static.get("endpoint")))]

    if extension.md5_cred:
        auth: Options = [
            ("type", "auth"),
            ("auth_type", str(static["auth"]["auth_type"])),
            ("username", number),
            ("realm", realm),
            ("md5_cred", extension.md5_cred),
        ]
        sections.append(render_section(f"{number}-auth", _with_static(auth, static.get("auth"))))

    aor: Options = [
        ("type", "aor"),
        ("max_contacts", str(extension.max_contacts)),
        ("qualify_frequency", str(extension.qualify_frequency)),
    ]
    sections.append(render_section(number, _with_static(aor, static.get("aor"))))
    return _join_sections(sections)


def trunk_sections(trunk: TrunkRecord) -> str:
    """Endpoint, optional auth, aor and optional identify sections for one trunk"""
    if not TRUNK_NAME.match(trunk.name):
        raise ValidationError(
            f"Trunk name '{trunk.name}' may only contain letters, digits, underscores and hyphens"
        )
    if not trunk.host:
        raise ValidationError(f"Trunk '{trunk.name}' has no host")

    static = PJSIP_DEFAULTS["trunk"]["static"]
    name = trunk.name

    endpoint: Options = [("type", "endpoint"), ("context", trunk.context)]
    endpoint += _codec_options(trunk.codecs)
    endpoint.append(("transport", transport_name(trunk.transport)))
    endpoint.append(("aors", name))
    if trunk.username:
        endpoint.append(("outbound_auth", f"{name}-auth"))
    if trunk.from_domain:
        endpoint.append(("from_domain", trunk.from_domain))
    if trunk.from_user:
        endpoint.append(("from_user", trunk.from_user))
    sections = [render_section(name, _with_static(endpoint, static.get("endpoint")))]

    if trunk.username:
        auth: Options = [
            ("type", "auth"),
            ("auth_type", str(static["auth"]["auth_type"])),
            ("username", trunk.username),
            ("password", trunk.secret or ""),
        ]
        sections.append(render_section(f"{name}-auth", _with_static(auth, static.get("auth"))))

    aor: Options = [
        ("type", "aor"),
        ("contact", f"sip:{trunk.host}:{trunk.port}"),
        ("qualify_frequency", str(trunk.qualify_frequency)),
    ]
    sections.append(render_section(name, _with_static(aor, static.get("aor"))))

    if trunk.match_inbound:
        identify: Options = [("type", "identify"), ("endpoint", name), ("match", trunk.host)]
        sections.append(render_section(f"{name}-identify", identify))
    return _join_sections(sections)


def transport_sections(transports: Iterable[str] = ("udp", "tcp")) -> str:
    table = PJSIP_DEFAULTS["transports"]
    sections = []
    for transport in transports:
        if transport not in table:
            raise ValidationError(f"No transport defaults for '{transport}'")
        options: Options = [("type", "transport")]
        options += [(key, str(value)) for key, value in table[transport].items()]
        sections.append(render_section(transport_name(transport), options))
    return _join_sections(sections)


# ----------------------------------------------------------------------------
# extensions.conf
# ----------------------------------------------------------------------------

def _application(app: str, app_data: str) -> str:
    return f"{app}({app_data})" if app_data else app


def render_rule(rule: DialplanRuleRecord) -> List[str]:
    """Verbose dialplan lines for a rule, commented out when disabled"""
    lines: List[str] = []
    if rule.description:
        lines.append(f"; {rule.description}")

    if rule.rule_type in VERBOSE_RULE_TYPES:
        lines.append(f"exten => {rule.pattern},1,NoOp({rule.name}: ${{EXTEN}})")
        if rule.app == "Dial":
            lines.append(f" same => n,Dial({rule.app_data})")
            lines.append(" same => n,Hangup()")
        else:
            lines.append(f" same => n,{_application(rule.app, rule.app_data)}")
    else:
        lines.append(f"exten => {rule.pattern},{rule.priority},{_application(rule.app, rule.app_data)}")

    if not rule.enabled:
        lines = [f"; {line}" for line in lines]
    return lines


def rule_sort_key(rule: DialplanRuleRecord) -> Tuple[int, str]:
    return (rule.sort_order, rule.pattern)


def context_block(context: str, rules: Iterable[DialplanRuleRecord]) -> List[str]:
    lines = [f"[{context}]"]
    for rule in sorted(rules, key=rule_sort_key):
        lines.extend(render_rule(rule))
        lines.append("")
    return lines


def dialplan_rules(rules: Iterable[DialplanRuleRecord]) -> str:
    """All rules grouped into one block per context, contexts in name order"""
    contexts: Dict[str, List[DialplanRuleRecord]] = {}
    for rule in rules:
        contexts.setdefault(rule.context, []).append(rule)

    lines: List[str] = []
    for context in sorted(contexts):
        lines.extend(context_block(context, contexts[context]))
    return "\n".join(lines)


def outbound_routes(trunks: Iterable[TrunkRecord], context: str = OUTBOUND_ROUTES_CONTEXT) -> str:
    """Prefix routes trying each enabled trunk in priority order"""
    groups: Dict[str, List[TrunkRecord]] = {}
    for trunk in trunks:
        if not trunk.enabled:
            continue
        if not DIAL_PREFIX.match(trunk.prefix or ""):
            raise ValidationError(f"Trunk '{trunk.name}' prefix '{trunk.prefix}' must be digits")
        groups.setdefault(trunk.prefix, []).append(trunk)
    if not groups:
        return ""

    for members in groups.values():
        members.sort(key=lambda trunk: (trunk.priority, trunk.name))
    ordered = sorted(groups.items(), key=lambda item: (item[1][0].priority, item[1][0].name, item[0]))

    lines = [f"[{context}]"]
    for prefix, members in ordered:
        names = ", ".join(trunk.name for trunk in members)
        lines.append(f"exten => _{prefix}X.,1,NoOp(Outbound call via {names})")
        for trunk in members:
            if trunk.strip_digits > 0:
                lines.append(f" same => n,Set(OUTNUM=${{EXTEN:{trunk.strip_digits}}})")
            else:
                lines.append(" same => n,Set(OUTNUM=${EXTEN})")
            lines.append(f" same => n,Dial(PJSIP/${{OUTNUM}}@{trunk.name},60)")
        lines.append(" same => n,Hangup()")
        lines.append("")
    return "\n".join(lines)


def default_internal_rule() -> DialplanRuleRecord:
    return DialplanRuleRecord(
        name="Internal Extension Calls",
        context="from-internal",
        pattern="_1XX",
        priority=1,
        app="Dial",
        app_data="PJSIP/${EXTEN},30",
        enabled=True,
        rule_type="pattern",
        description="Pattern match for extensions 100-199. ${EXTEN} is replaced with the dialed number.",
        sort_order=0,
    )


def outbound_rule(name: str, prefix: str, trunk_name: str, strip_digits: int = 1) -> DialplanRuleRecord:
    """Dial rule sending `prefix` + number out through a trunk"""
    if not TRUNK_NAME.match(trunk_name):
        raise ValidationError(
            "Trunk name may only contain alphanumeric characters, underscores, and hyphens"
        )
    if not DIAL_PREFIX.match(prefix):
        raise ValidationError("Prefix may only contain digits")

    if strip_digits > 0:
        app_data = f"PJSIP/${{EXTEN:{strip_digits}}}@{trunk_name},60"
    else:
        app_data = f"PJSIP/${{EXTEN}}@{trunk_name},60"

    return DialplanRuleRecord(
        name=name,
        context="from-internal",
        pattern=f"_{prefix}X.",
        priority=1,
        app="Dial",
        app_data=app_data,
        enabled=True,
        rule_type="outbound",
        description=f"Outbound routing via {trunk_name}. Dial {prefix} + number.",
        sort_order=10,
    )
