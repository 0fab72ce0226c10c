from ai.response_parser import extract_first_json_object, parse_model_response, repair_json


def test_plain_json():
    data = parse_model_response('{"name": "Jane Doe", "companies": ["Google"]}')
    assert data == {"name": "Jane Doe", "companies": ["Google"]}


def test_code_fenced_json():
    text = '```json\n{"name": "Jane Doe", "graduationYear": "2025"}\n```'
    assert parse_model_response(text) == {"name": "Jane Doe", "graduationYear": "2025"}


def test_json_with_commentary():
    text = 'Here is the result: {"name": "Jane {J} Doe", "major": "CS"} hope this helps'
    assert parse_model_response(text) == {"name": "Jane {J} Doe", "major": "CS"}


def test_bare_keys_and_single_quotes_are_repaired():
    text = "{name: 'Jane Doe', major: 'Physics', companies: ['NASA', 'Google']}"
    data = parse_model_response(text)
    assert data == {"name": "Jane Doe", "major": "Physics", "companies": ["NASA", "Google"]}


def test_missing_braces_are_added():
    assert repair_json('"name": "Jane"') == '{"name": "Jane"}'
    assert parse_model_response('"name": "Jane", "major": "Math"') == {"name": "Jane", "major": "Math"}


def test_regex_fallback_for_broken_json():
    text = '"name": "Jane Doe", "major": "Biology", "graduationYear": "2026", "companies": ["Acme", "Initech"], "keywords": [ , oops'
    data = parse_model_response(text)
    assert data["name"] == "Jane Doe"
    assert data["major"] == "Biology"
    assert data["graduationYear"] == "2026"
    assert data["companies"] == ["Acme", "Initech"]
    assert data["keywords"] == []


def test_empty_response():
    data = parse_model_response("")
    assert data == {"name": "", "major": "", "graduationYear": "", "companies": [], "keywords": []}


def test_extract_first_json_object_ignores_braces_in_strings():
    assert extract_first_json_object('x {"a": "}"} {"b": 1}') == '{"a": "}"}'
    assert extract_first_json_object("no object") is None


def test_repair_leaves_string_contents_alone():
    text = "{major: \"CS, focus: AI\", name: 'Jane', keywords: [\"O'Reilly, editor: yes\"]}"
    data = parse_model_response(text)
    assert data == {"major": "CS, focus: AI", "name": "Jane", "keywords": ["O'Reilly, editor: yes"]}
