import os
os.environ["TESTING"] = "1"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import io
import json
import stat
import sys
import zipfile
from pathlib import Path
import shutil

sys.path.append(str(Path(__file__).resolve().parents[2]))

from proofledger.main import app
from proofledger.database import Base
from proofledger import models
from proofledger.store import PathStore, get_store

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

test_store = PathStore(TestingSessionLocal)

app.dependency_overrides[get_store] = lambda: test_store


@pytest.fixture(autouse=True)
def clean_store():
    session = TestingSessionLocal()
    try:
        session.query(models.StoreDocument).delete()
        session.commit()
    finally:
        session.close()
    yield


@pytest.fixture
def store():
    return test_store


@pytest.fixture(autouse=True)
def upload_dir(tmp_path):
    d = tmp_path / "uploads"
    d.mkdir()
    os.environ["UPLOAD_DIR"] = str(d)
    yield
    shutil.rmtree(d, ignore_errors=True)

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


INSTANCE_DOC = {"a_pub_user": ["0x1"], "a_pub_block": ["0x2"], "a_pub_function": ["0x3"]}
PROOF_DOC = {"proof_entries_part1": ["0x4"], "proof_entries_part2": ["0x5"]}
STATE_SNAPSHOT_DOC = {
    "stateRoot": "0xabc",
    "contractAddress": "0xdef",
    "registeredKeys": ["0x01"],
    "storageEntries": [{"index": 0, "key": "0x01", "value": "0x02"}],
}


def make_bundle(files=None, prefix=""):
    """Zip a proof bundle; ``files`` overrides or removes (None) default members."""

    members = {
        "instance.json": INSTANCE_DOC,
        "proof.json": PROOF_DOC,
        "state_snapshot.json": STATE_SNAPSHOT_DOC,
    }
    members.update(files or {})
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, document in members.items():
            if document is None:
                continue
            payload = document if isinstance(document, (bytes, str)) else json.dumps(document)
            archive.writestr(f"{prefix}{name}", payload)
    return buffer.getvalue()


FAKE_PROVER_SOURCE = r'''
import json
import os
import sys
import time
import zipfile

HERE = os.path.dirname(os.path.abspath(__file__))
FLAGS = {
    "--synthesize": "synthesize",
    "--prove": "prove",
    "--preprocess": "preprocess",
    "--verify": "verify",
    "--extract-proof": "extract",
}

args = sys.argv[1:]
stage = next((FLAGS[arg] for arg in args if arg in FLAGS), "unknown")
with open(os.path.join(HERE, "calls.log"), "a") as log:
    log.write(stage + "\n")

behaviour = {}
config_path = os.path.join(HERE, "behaviour.json")
if os.path.exists(config_path):
    with open(config_path) as handle:
        behaviour = json.load(handle).get(stage, {})

if behaviour.get("sleep"):
    with open(os.path.join(HERE, stage + ".pid"), "w") as handle:
        handle.write(str(os.getpid()))
    time.sleep(behaviour["sleep"])

instance = {"a_pub_user": [], "a_pub_block": [], "a_pub_function": []}
snapshot = {"stateRoot": "0xabc", "contractAddress": "0xdef", "registeredKeys": [], "storageEntries": []}

if stage == "synthesize" and not behaviour.get("skip_outputs"):
    output_dir = os.path.join(os.getcwd(), "resource", "synthesizer", "output")
    os.makedirs(output_dir, exist_ok=True)
    for name, document in (
        ("instance.json", instance),
        ("state_snapshot.json", snapshot),
        ("placementVariables.json", {"placements": []}),
    ):
        with open(os.path.join(output_dir, name), "w") as handle:
            json.dump(document, handle)

if stage == "extract" and not behaviour.get("skip_outputs"):
    target = args[args.index("--extract-proof") + 1]
    with zipfile.ZipFile(target, "w") as archive:
        archive.writestr("instance.json", json.dumps(instance))
        archive.writestr("proof.json", json.dumps({"proof_entries_part1": [], "proof_entries_part2": []}))
        archive.writestr("state_snapshot.json", json.dumps(snapshot))

if stage == "verify":
    print(behaviour.get("stdout", "Verify: verify output => true"))
elif behaviour.get("stdout"):
    print(behaviour["stdout"])
if behaviour.get("stderr"):
    sys.stderr.write(behaviour["stderr"])
sys.exit(behaviour.get("exit", 0))
'''


class FakeProver:
    """Handle on the throwaway prover install written for a test."""

    def __init__(self, root: Path):
        self.root = root
        self.cli_path = root / "tokamak-cli"
        self.dist_root = root / "dist"
        self._behaviour = {}

    def configure(self, stage, **behaviour):
        self._behaviour[stage] = behaviour
        (self.root / "behaviour.json").write_text(json.dumps(self._behaviour))

    def calls(self):
        log = self.root / "calls.log"
        if not log.exists():
            return []
        return [line for line in log.read_text().splitlines() if line]

    def pid_file(self, stage):
        return self.root / f"{stage}.pid"


@pytest.fixture
def fake_prover(tmp_path, monkeypatch):
    root = tmp_path / "prover"
    root.mkdir()
    prover = FakeProver(root)
    (prover.dist_root / "backend-lib" / "icicle" / "lib").mkdir(parents=True)
    (prover.dist_root / "resource" / "synthesizer" / "output").mkdir(parents=True)
    prover.cli_path.write_text(f"#!{sys.executable}\n{FAKE_PROVER_SOURCE}")
    prover.cli_path.chmod(prover.cli_path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PROVER_CLI", str(prover.cli_path))
    monkeypatch.setenv("PROVER_DIST_ROOT", str(prover.dist_root))
    return prover


SYNTH_REQUEST = {
    "previousStateSnapshot": STATE_SNAPSHOT_DOC,
    "signedTxRlp": "0xf86c0a8502540be400",
    "blockInfo": {"number": 100, "timestamp": 1700000000},
    "contractCodes": [{"address": "0xdef", "code": "0x6000"}],
}
