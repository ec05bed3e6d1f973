from datetime import timedelta

from canarykit.recorder import VERSION, CanaryPhase, Recorder


def _samples(text):
    out = {}
    for line in text.splitlines():
        if not line or line.startswith("#"):
            continue
        series, value = line.rsplit(" ", 1)
        out[series] = float(value)
    return out


def test_empty_recorder_renders_nothing():
    assert Recorder("flagger").render() == ""


def test_set_info():
    recorder = Recorder("flagger")
    recorder.set_info(VERSION, "istio")
    text = recorder.render()
    assert "# HELP flagger_info Flagger version and mesh provider information" in text
    assert "# TYPE flagger_info gauge" in text
    assert _samples(text)[f'flagger_info{{version="{VERSION}",mesh_provider="istio"}}'] == 1


def test_set_total_overwrites():
    recorder = Recorder("flagger")
    recorder.set_total("default", 3)
    recorder.set_total("default", 5)
    recorder.set_total("test", 1)
    samples = _samples(recorder.render())
    assert samples['flagger_canary_total{namespace="default"}'] == 5
    assert samples['flagger_canary_total{namespace="test"}'] == 1


def test_set_status_phases():
    recorder = Recorder("flagger")
    recorder.set_status("a", "ns", CanaryPhase.PROGRESSING)
    recorder.set_status("b", "ns", CanaryPhase.FAILED)
    recorder.set_status("c", "ns", CanaryPhase.SUCCEEDED)
    recorder.set_status("d", "ns", "Initialized")
    samples = _samples(recorder.render())
    assert samples['flagger_canary_status{name="a",namespace="ns"}'] == 0
    assert samples['flagger_canary_status{name="b",namespace="ns"}'] == 2
    assert samples['flagger_canary_status{name="c",namespace="ns"}'] == 1
    assert samples['flagger_canary_status{name="d",namespace="ns"}'] == 1


def test_set_weight_primary_and_canary():
    recorder = Recorder("flagger")
    recorder.set_weight("podinfo", "test", 60, 40)
    samples = _samples(recorder.render())
    assert samples['flagger_canary_weight{workload="podinfo-primary",namespace="test"}'] == 60
    assert samples['flagger_canary_weight{workload="podinfo",namespace="test"}'] == 40


def test_set_duration_histogram_invariants():
    recorder = Recorder("flagger")
    recorder.set_duration("podinfo", "test", timedelta(milliseconds=200))
    recorder.set_duration("podinfo", "test", 3.0)
    text = recorder.render()
    assert "# TYPE flagger_canary_duration_seconds histogram" in text
    samples = _samples(text)
    prefix = 'flagger_canary_duration_seconds'
    labels = 'name="podinfo",namespace="test"'
    assert samples[f"{prefix}_count{{{labels}}}"] == 2
    assert samples[f"{prefix}_sum{{{labels}}}"] == 3.2
    assert samples[f'{prefix}_bucket{{{labels},le="+Inf"}}'] == 2
    buckets = [v for k, v in samples.items() if k.startswith(f"{prefix}_bucket")]
    assert buckets == sorted(buckets)


def test_no_controller_prefix():
    recorder = Recorder("")
    recorder.set_total("default", 2)
    assert _samples(recorder.render())['canary_total{namespace="default"}'] == 2


def test_label_values_escaped():
    recorder = Recorder("flagger")
    recorder.set_total('a"b', 1)
    assert 'namespace="a\\"b"' in recorder.render()