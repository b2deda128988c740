import asyncio
import base64
import io
import json
import zipfile

import pytest

from proofledger import pubsub
from proofledger.routes import prover as prover_routes
from proofledger.services.pipeline import PipelineInputs, PipelineOrchestrator, ProgressEvent
from proofledger.tests.conftest import SYNTH_REQUEST, make_bundle


def _frames(body: str):
    return [json.loads(chunk[len("data: "):]) for chunk in body.split("\n\n") if chunk.startswith("data: ")]


def test_synthesize_returns_archive(client, fake_prover):
    resp = client.post("/api/prover/synthesize", json={**SYNTH_REQUEST, "channelId": "0xAB"})
    assert resp.status_code == 200, resp.text
    assert resp.headers["content-type"] == "application/zip"
    assert "l2-transaction-channel-0xab.zip" in resp.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
        assert "instance.json" in archive.namelist()


def test_synthesize_failure_is_reported_as_json(client, fake_prover):
    fake_prover.configure("synthesize", stderr="Synthesizer: step error: stack underflow\n")
    resp = client.post("/api/prover/synthesize", json={**SYNTH_REQUEST, "channelId": "0xab"})
    assert resp.status_code == 500
    assert resp.json() == {
        "error": "Failed to synthesize L2 transaction",
        "details": "stack underflow",
        "stage": "synthesize",
    }


def test_synthesize_validates_inputs(client, fake_prover):
    resp = client.post(
        "/api/prover/synthesize",
        json={**SYNTH_REQUEST, "channelId": "0xab", "signedTxRlp": "nothex"},
    )
    assert resp.status_code == 400
    embedded_null = client.post(
        "/api/prover/synthesize-stream",
        json={**SYNTH_REQUEST, "channelId": "0xab", "signedTxRlp": "0xab\u0000cd"},
    )
    assert embedded_null.status_code == 400
    missing = client.post("/api/prover/synthesize", json={"channelId": "0xab"})
    assert missing.status_code == 422
    assert fake_prover.calls() == []


def test_synthesize_stream_emits_progress_frames(client, fake_prover):
    resp = client.post(
        "/api/prover/synthesize-stream",
        json={**SYNTH_REQUEST, "channelId": "0xab", "includeProof": True},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    frames = _frames(resp.text)
    assert [frame["step"] for frame in frames] == [
        "synthesizing",
        "proving",
        "verifying",
        "verifying",
        "verifying",
        "completed",
    ]
    archive = base64.b64decode(frames[-1]["artifactBytes"])
    with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
        assert "proof.json" in bundle.namelist()


def test_synthesize_stream_ends_with_single_error_frame(client, fake_prover):
    fake_prover.configure("prove", stderr="error: witness generation failed", exit=1)
    resp = client.post(
        "/api/prover/synthesize-stream",
        json={**SYNTH_REQUEST, "channelId": "0xab", "includeProof": True},
    )
    frames = _frames(resp.text)
    terminal = [frame for frame in frames if frame["step"] in {"completed", "error"}]
    assert terminal == [frames[-1]]
    assert frames[-1]["step"] == "error"
    assert frames[-1]["error"] == "witness generation failed"
    assert frames[-1]["stage"] == "prove"
    assert fake_prover.calls() == ["synthesize", "prove"]


def test_verify_endpoint(client, fake_prover):
    encoded = base64.b64encode(make_bundle()).decode()
    resp = client.post("/api/prover/verify", json={"proofZipBase64": encoded})
    assert resp.status_code == 200, resp.text
    assert resp.json()["verified"] is True

    fake_prover.configure("verify", stdout="Verify: verify output => false")
    rejected = client.post("/api/prover/verify", json={"proofZipBase64": encoded})
    assert rejected.json()["verified"] is False


def test_verify_endpoint_rejects_bad_payloads(client, fake_prover):
    assert client.post("/api/prover/verify", json={"proofZipBase64": "%%%"}).status_code == 400
    not_zip = base64.b64encode(b"plain text").decode()
    assert client.post("/api/prover/verify", json={"proofZipBase64": not_zip}).status_code == 400
    no_proof = base64.b64encode(make_bundle({"proof.json": None})).decode()
    resp = client.post("/api/prover/verify", json={"proofZipBase64": no_proof})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing required file in ZIP: proof.json"


@pytest.mark.asyncio
async def test_progress_is_published_without_artifact(fake_prover):
    redis_conn = await pubsub.get_redis()
    listener = redis_conn.pubsub()
    await listener.subscribe("pipeline:0xab")
    try:
        orchestrator = PipelineOrchestrator()
        job = orchestrator.create_job(
            "0xab",
            PipelineInputs(
                previous_state_snapshot=SYNTH_REQUEST["previousStateSnapshot"],
                signed_tx_rlp=SYNTH_REQUEST["signedTxRlp"],
                block_info=SYNTH_REQUEST["blockInfo"],
                contract_codes=SYNTH_REQUEST["contractCodes"],
            ),
        )
        await prover_routes._publish_progress(
            job, ProgressEvent(step="completed", message="done", artifact_bytes=b"PK")
        )

        async def _receive_message():
            while True:
                message = await listener.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message:
                    return message
                await asyncio.sleep(0.05)

        raw = await asyncio.wait_for(_receive_message(), timeout=5.0)
        event = json.loads(raw["data"])
        assert event == {"jobId": job.job_id, "step": "completed", "message": "done"}
    finally:
        await listener.unsubscribe("pipeline:0xab")
        await listener.close()
