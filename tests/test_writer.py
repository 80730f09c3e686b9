from domains2providers.writer import output_filename, render_payload, write_rule_list


def test_output_filename():
    assert output_filename("direct") == "direct.yaml"
    assert output_filename("google", "ads") == "google@ads.yaml"


def test_render_payload():
    assert render_payload(["+.example.com", "+.sub.example.net"]) == (
        'payload:\n  - "+.example.com"\n  - "+.sub.example.net"\n'
    )


def test_render_empty_payload():
    assert render_payload([]) == "payload: []\n"
    assert render_payload(iter(())) == "payload: []\n"


def test_write_rule_list_replaces_file(tmp_path):
    target = tmp_path / "out" / "ntp.yaml"
    write_rule_list(target, ["+.old.com"])
    write_rule_list(target, ["+.a.com", "10.0.0.0/8"])
    assert target.read_text(encoding="utf-8") == 'payload:\n  - "+.a.com"\n  - "10.0.0.0/8"\n'
    assert [p.name for p in target.parent.iterdir()] == ["ntp.yaml"]


def test_write_empty_rule_list(tmp_path):
    target = write_rule_list(tmp_path / "empty.yaml", [])
    assert target.read_text(encoding="utf-8") == "payload: []\n"
