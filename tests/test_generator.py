# tests/test_generator.py
"""
Rendering of extensions, trunks, transports and dialplan text.
"""

import pytest

from apps.reconcile import generator
from apps.reconcile.records import ExtensionRecord, TrunkRecord, DialplanRuleRecord
from shared.exceptions import ValidationError


def make_rule(**overrides) -> DialplanRuleRecord:
    values = dict(name="Internal", context="from-internal", pattern="100",
                  app="Dial", app_data="PJSIP/100,30")
    values.update(overrides)
    return DialplanRuleRecord(**values)


def test_extension_sections_full_output():
    record = ExtensionRecord(number="1001", name="Ann", md5_cred="0123abcd")

    assert generator.extension_sections(record, realm="asterisk") == (
        "[1001]\n"
        "type=endpoint\n"
        "context=from-internal\n"
        "disallow=all\n"
        "allow=ulaw\n"
        "allow=alaw\n"
        "allow=g722\n"
        "transport=transport-udp\n"
        "auth=1001-auth\n"
        "aors=1001\n"
        "direct_media=no\n"
        "callerid=\"Ann\" <1001>\n"
        "subscribe_context=from-internal\n"
        "device_state_busy_at=1\n"
        "\n"
        "[1001-auth]\n"
        "type=auth\n"
        "auth_type=md5\n"
        "username=1001\n"
        "realm=asterisk\n"
        "md5_cred=0123abcd\n"
        "\n"
        "[1001]\n"
        "type=aor\n"
        "max_contacts=1\n"
        "qualify_frequency=60\n"
        "remove_existing=yes\n"
        "support_outbound=yes\n"
    )


def test_extension_without_secret_has_no_auth_section():
    text = generator.extension_sections(ExtensionRecord(number="1002"))
    assert "[1002-auth]" not in text
    assert "auth=" not in text
    assert "callerid" not in text


def test_extension_codec_order_is_kept():
    text = generator.extension_sections(ExtensionRecord(number="1003", codecs=["g722", "ulaw"]))
    assert "disallow=all\nallow=g722\nallow=ulaw\n" in text


def test_extension_generation_is_deterministic():
    record = ExtensionRecord(number="1004", name="Bob", md5_cred="ff")
    assert generator.extension_sections(record) == generator.extension_sections(record.model_copy())


def test_extension_number_must_be_numeric():
    with pytest.raises(ValidationError):
        generator.extension_sections(ExtensionRecord(number="10a1"))


def test_trunk_sections_full_output():
    record = TrunkRecord(name="voipco", host="sip.voip.example", username="acct",
                         secret="pw", from_domain="voip.example")

    assert generator.trunk_sections(record) == (
        "[voipco]\n"
        "type=endpoint\n"
        "context=from-trunk\n"
        "disallow=all\n"
        "allow=ulaw\n"
        "allow=alaw\n"
        "allow=g722\n"
        "transport=transport-udp\n"
        "aors=voipco\n"
        "outbound_auth=voipco-auth\n"
        "from_domain=voip.example\n"
        "direct_media=no\n"
        "\n"
        "[voipco-auth]\n"
        "type=auth\n"
        "auth_type=userpass\n"
        "username=acct\n"
        "password=pw\n"
        "\n"
        "[voipco]\n"
        "type=aor\n"
        "contact=sip:sip.voip.example:5060\n"
        "qualify_frequency=60\n"
        "\n"
        "[voipco-identify]\n"
        "type=identify\n"
        "endpoint=voipco\n"
        "match=sip.voip.example\n"
    )


def test_trunk_without_username_or_inbound_match():
    text = generator.trunk_sections(TrunkRecord(name="peer", host="10.0.0.5", port=5080,
                                                match_inbound=False))
    assert "outbound_auth" not in text
    assert "[peer-auth]" not in text
    assert "[peer-identify]" not in text
    assert "contact=sip:10.0.0.5:5080" in text


@pytest.mark.parametrize("record", [
    TrunkRecord(name="bad name", host="h"),
    TrunkRecord(name="nohost", host=""),
])
def test_invalid_trunks_are_rejected(record):
    with pytest.raises(ValidationError):
        generator.trunk_sections(record)


def test_transport_sections():
    assert generator.transport_sections(["udp"]) == (
        "[transport-udp]\n"
        "type=transport\n"
        "protocol=udp\n"
        "bind=0.0.0.0:5060\n"
    )
    with pytest.raises(ValidationError):
        generator.transport_sections(["carrier-pigeon"])


def test_pattern_rule_renders_verbose_form():
    rule = make_rule(description="Reception")
    assert generator.render_rule(rule) == [
        "; Reception",
        "exten => 100,1,NoOp(Internal: ${EXTEN})",
        " same => n,Dial(PJSIP/100,30)",
        " same => n,Hangup()",
    ]


def test_non_dial_and_custom_rules():
    playback = make_rule(app="Playback", app_data="hello-world")
    assert generator.render_rule(playback)[-1] == " same => n,Playback(hello-world)"

    custom = make_rule(rule_type="custom", priority=2, app="Hangup", app_data="")
    assert generator.render_rule(custom) == ["exten => 100,2,Hangup"]


def test_disabled_rule_is_kept_as_comment():
    lines = generator.render_rule(make_rule(enabled=False))
    assert lines
    assert all(line.startswith("; ") for line in lines)
    assert "; exten => 100,1,NoOp(Internal: ${EXTEN})" in lines


def test_dialplan_rules_are_ordered_by_sort_order():
    rules = [
        make_rule(name="Outbound", pattern="_9X.", sort_order=3),
        make_rule(name="Reception", pattern="100", sort_order=1),
        make_rule(name="Internal", pattern="_1XX", sort_order=2),
    ]
    text = generator.dialplan_rules(rules)

    positions = [text.index(f"exten => {pattern},") for pattern in ("100", "_1XX", "_9X.")]
    assert positions == sorted(positions)


def test_dialplan_contexts_are_alphabetical():
    rules = [make_rule(context="zeta"), make_rule(context="alpha")]
    text = generator.dialplan_rules(rules)
    assert text.index("[alpha]") < text.index("[zeta]")


def test_outbound_routes_group_by_prefix_in_priority_order():
    trunks = [
        TrunkRecord(name="bravo", host="b.example", priority=2, prefix="9", strip_digits=0),
        TrunkRecord(name="alpha", host="a.example", priority=1, prefix="9", strip_digits=1),
        TrunkRecord(name="charlie", host="c.example", priority=1, prefix="0", strip_digits=1),
        TrunkRecord(name="delta", host="d.example", priority=0, prefix="9", enabled=False),
    ]

    assert generator.outbound_routes(trunks, "from-internal") == (
        "[from-internal]\n"
        "exten => _9X.,1,NoOp(Outbound call via alpha, bravo)\n"
        " same => n,Set(OUTNUM=${EXTEN:1})\n"
        " same => n,Dial(PJSIP/${OUTNUM}@alpha,60)\n"
        " same => n,Set(OUTNUM=${EXTEN})\n"
        " same => n,Dial(PJSIP/${OUTNUM}@bravo,60)\n"
        " same => n,Hangup()\n"
        "\n"
        "exten => _0X.,1,NoOp(Outbound call via charlie)\n"
        " same => n,Set(OUTNUM=${EXTEN:1})\n"
        " same => n,Dial(PJSIP/${OUTNUM}@charlie,60)\n"
        " same => n,Hangup()\n"
    )


def test_outbound_routes_empty_without_enabled_trunks():
    assert generator.outbound_routes([TrunkRecord(name="off", host="h", enabled=False)]) == ""


def test_outbound_rule_factory():
    rule = generator.outbound_rule("Out", "9", "voipco", strip_digits=1)
    assert rule.pattern == "_9X."
    assert rule.app_data == "PJSIP/${EXTEN:1}@voipco,60"
    assert rule.rule_type == "outbound"

    with pytest.raises(ValidationError):
        generator.outbound_rule("Out", "9a", "voipco")
    with pytest.raises(ValidationError):
        generator.outbound_rule("Out", "9", "voip co")


def test_default_internal_rule():
    rule = generator.default_internal_rule()
    assert (rule.context, rule.pattern, rule.app) == ("from-internal", "_1XX", "Dial")


def test_reenabled_rule_renders_as_before():
    rule = make_rule(description="Reception")
    before = generator.dialplan_rules([rule])

    disabled = generator.dialplan_rules([rule.model_copy(update={"enabled": False})])
    assert disabled != before
    assert "exten => 100,1" in disabled

    assert generator.dialplan_rules([rule.model_copy(update={"enabled": True})]) == before
