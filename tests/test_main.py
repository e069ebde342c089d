import json

import pytest

pytest.importorskip("requests")
responses = pytest.importorskip("responses")

import main


def _sbom(packages, relationships=()):
    return {
        "spdxVersion": "SPDX-2.3",
        "packages": list(packages),
        "relationships": list(relationships),
    }


def _write_sbom(tmp_path, doc):
    path = tmp_path / "sbom.json"
    path.write_text(json.dumps(doc), encoding="utf-8")
    return path


HELLO_URL = "https://example.com/src/hello-1.0.tar.gz"
MISSING_URL = "https://example.com/src/missing-2.0.tar.gz"


@responses.activate
def test_end_to_end_downloads_extracts_and_summarizes(tmp_path, capsys, tar_bytes):
    responses.add(
        responses.GET,
        HELLO_URL,
        body=tar_bytes([("dir", "hello-1.0"), ("file", "hello-1.0/README", "hi\n")]),
        status=200,
    )
    responses.add(responses.GET, MISSING_URL, status=404)
    sbom_path = _write_sbom(
        tmp_path,
        _sbom(
            [
                {"SPDXID": "SPDXRef-hello", "name": "hello", "downloadLocation": "NOASSERTION"},
                {"SPDXID": "SPDXRef-hello-src", "name": "hello-src", "downloadLocation": HELLO_URL},
                {"SPDXID": "SPDXRef-missing-src", "name": "missing-src", "downloadLocation": MISSING_URL},
            ],
            [
                {
                    "spdxElementId": "SPDXRef-hello",
                    "relationshipType": "GENERATED_FROM",
                    "relatedSpdxElement": "SPDXRef-hello-src",
                }
            ],
        ),
    )
    out_dir = tmp_path / "out"
    out_dir.mkdir()

    rc = main.main([str(sbom_path), str(out_dir), "--concurrency", "2"])

    captured = capsys.readouterr().out
    assert rc == 0
    assert "Found 2 populated downloadLocation URLs" in captured
    assert "=== EXECUTION SUMMARY ===" in captured
    assert "Downloads: 1 successful, 1 failed (total: 2)" in captured
    assert "Extractions: 1 successful, 0 failed (total: 1)" in captured
    assert f"download failed: {MISSING_URL}: bad status: 404" in captured
    assert (out_dir / "archives" / "hello-1.0.tar.gz").is_file()
    assert not (out_dir / "archives" / "missing-2.0.tar.gz").exists()
    assert (out_dir / "hello-1.0" / "README").read_text() == "hi\n"


def test_file_input_requires_download_dir(tmp_path):
    sbom_path = _write_sbom(tmp_path, _sbom([]))

    assert main.main([str(sbom_path)]) == 1


def test_missing_sbom_file_fails(tmp_path):
    assert main.main([str(tmp_path / "nope.json"), str(tmp_path / "out")]) == 1


def test_malformed_sbom_fails(tmp_path):
    sbom_path = tmp_path / "sbom.json"
    sbom_path.write_text("{not json", encoding="utf-8")

    assert main.main([str(sbom_path), str(tmp_path / "out")]) == 1


def test_strict_mode_fails_on_dangling_relationship(tmp_path):
    sbom_path = _write_sbom(
        tmp_path,
        _sbom(
            [{"SPDXID": "SPDXRef-a", "name": "a", "downloadLocation": "NOASSERTION"}],
            [{"spdxElementId": "SPDXRef-a", "relationshipType": "GENERATED_FROM", "relatedSpdxElement": "SPDXRef-gone"}],
        ),
    )

    assert main.main([str(sbom_path), str(tmp_path / "out"), "--strict"]) == 1
    assert main.main([str(sbom_path), str(tmp_path / "out")]) == 0


def test_no_tarballs_is_not_an_error(tmp_path, capsys):
    sbom_path = _write_sbom(
        tmp_path,
        _sbom([{"SPDXID": "SPDXRef-a", "name": "a", "downloadLocation": "git+https://example.com/a.git"}]),
    )

    assert main.main([str(sbom_path), str(tmp_path / "out")]) == 0
    assert "No tarball URLs found to download" in capsys.readouterr().out


@pytest.mark.parametrize("flag", ["--concurrency", "--extract-workers"])
def test_non_positive_worker_counts_are_rejected(tmp_path, flag):
    sbom_path = _write_sbom(tmp_path, _sbom([]))

    assert main.main([str(sbom_path), str(tmp_path / "out"), flag, "0"]) == 1


def test_image_input_saves_sbom_in_default_directory(tmp_path, monkeypatch, capsys):
    doc = _sbom([{"SPDXID": "SPDXRef-a", "name": "a", "downloadLocation": "NOASSERTION"}])
    calls = []

    def fake_fetch(ref, platform=None):
        calls.append((ref, platform))
        return json.dumps(doc).encode("utf-8")

    monkeypatch.setattr(main.attestation_fetcher, "fetch_document", fake_fetch)
    monkeypatch.chdir(tmp_path)

    rc = main.main(["cgr.dev/chainguard/unbound:latest", "--platform", "linux/arm64"])

    assert rc == 0
    assert calls == [("cgr.dev/chainguard/unbound:latest", "linux/arm64")]
    assert json.loads((tmp_path / "unbound" / "sbom.json").read_text()) == doc
    assert (tmp_path / "unbound" / "archives").is_dir()


def test_image_fetch_failure_returns_error(tmp_path, monkeypatch):
    def fake_fetch(ref, platform=None):
        raise main.attestation_fetcher.AttestationError("no SPDX attestations found for image x")

    monkeypatch.setattr(main.attestation_fetcher, "fetch_document", fake_fetch)

    assert main.main(["cgr.dev/chainguard/unbound:latest", str(tmp_path / "out")]) == 1
