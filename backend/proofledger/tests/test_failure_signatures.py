from proofledger.services.failure_signatures import (
    FailureSignature,
    SignatureTable,
    default_signatures,
    is_verified_output,
)


def test_step_error_detail_is_extracted():
    table = default_signatures()
    assert table.classify("Synthesizer: step error: X") == "X"


def test_handler_error_and_mismatch_are_recognised():
    table = default_signatures()
    assert table.match("Synthesizer: Handler: SSTORE failed").name == "handler_error"
    detail = table.classify("Synthesizer: Output data mismatch at placement 4")
    assert detail == "Synthesizer: Output data mismatch at placement 4"
    assert table.match("Undefined synthesizer handler for opcode 0xfe").name == "undefined_handler"


def test_multiline_stderr_takes_first_error_line():
    table = default_signatures()
    stderr = "warming up\nSynthesizer: error: bad opcode\nerror: second\n"
    assert table.classify(stderr) == "bad opcode"


def test_clean_output_has_no_signature():
    table = default_signatures()
    assert table.classify("") is None
    assert table.classify(None) is None
    assert table.classify("Synthesizer finished in 3.2s") is None


def test_signature_without_extractable_error_falls_back():
    table = SignatureTable([FailureSignature("panic", ("PANIC",))])
    assert table.classify("PANIC") == "PANIC"
    table.register(FailureSignature("oom", ("out of memory", "killed")))
    assert table.match("process killed: out of memory").name == "oom"


def test_describe_failure_prefers_transfer_reason():
    table = default_signatures()
    stderr = "Transaction failed: revert\nTransfer failed: insufficient balance\n"
    assert table.describe_failure(stderr, 1) == "insufficient balance"
    assert table.describe_failure("boom\nerror: disk full", 1) == "disk full"
    assert table.describe_failure("first\nlast line\n", 2) == "last line"
    assert table.describe_failure("", 137) == "prover exited with status 137"


def test_verified_output_phrases():
    assert is_verified_output("Verify: verify output => true")
    assert is_verified_output("all checks ✓")
    assert is_verified_output("Verification SUCCESS")
    assert not is_verified_output("Verify: verify output => false")
    assert not is_verified_output("")
    assert not is_verified_output(None)
