import threading
import time

import pytest

from cloudrecon.cloud.fanout import FanOut, Service, Unit, plan_units
from cloudrecon.core.exceptions import NoResultsError


def _static(records):
    return lambda region: [dict(r) for r in records]


def _boom(message):
    def lister(region):
        raise RuntimeError(message)

    return lister


def test_plan_units_expands_regional_services_only():
    ec2 = Service("instances", "EC2", _static([]))
    s3 = Service("buckets", "S3", _static([]), regional=False)

    units = plan_units([ec2, s3], ["us-east-1", "eu-west-1"])

    assert [u.name for u in units] == ["EC2 (us-east-1)", "EC2 (eu-west-1)", "S3"]
    assert units[2].region is None


def test_unit_name_without_region():
    unit = Unit(Service("users", "IAM Users", _static([]), regional=False), None)
    assert unit.name == "IAM Users"


def test_partial_failure_keeps_successful_records():
    def lister(region):
        if region == "us-west-2":
            raise RuntimeError("AccessDenied")
        return [{"instanceId": "i-1"}]

    ec2 = Service("instances", "EC2", lister)
    result = FanOut(4).run(plan_units([ec2], ["us-east-1", "us-west-2"]))

    assert result["instances"] == [{"instanceId": "i-1", "region": "us-east-1"}]
    assert result["errors"] == ["EC2 (us-west-2): AccessDenied"]


def test_regional_records_are_stamped_and_global_are_not():
    ec2 = Service("instances", "EC2", _static([{"instanceId": "i-1", "region": "stale"}]))
    s3 = Service("buckets", "S3", _static([{"bucketName": "b1"}]), regional=False)

    result = FanOut(2).run(plan_units([ec2, s3], ["ap-south-1"]))

    assert result["instances"][0]["region"] == "ap-south-1"
    assert result["buckets"] == [{"bucketName": "b1"}]
    assert "errors" not in result


def test_empty_lists_are_present_for_every_requested_key():
    users = Service("users", "IAM Users", _static([]), regional=False)
    roles = Service("roles", "IAM Roles", _static([]), regional=False)

    result = FanOut().run(plan_units([users, roles], ["us-east-1"]))

    assert result == {"users": [], "roles": []}


def test_every_unit_failing_raises_no_results():
    ec2 = Service("instances", "EC2", _boom("denied"))

    with pytest.raises(NoResultsError) as excinfo:
        FanOut(2).run(plan_units([ec2], ["us-east-1", "us-east-2"]))

    assert excinfo.value.errors == ["EC2 (us-east-1): denied", "EC2 (us-east-2): denied"]
    assert excinfo.value.code == "E3002"


def test_slow_unit_times_out_without_blocking_others():
    release = threading.Event()

    def slow(region):
        release.wait(2)
        return [{"id": "late"}]

    fast = Service("vpcs", "VPC", _static([{"vpcId": "vpc-1"}]))
    stuck = Service("kmsKeys", "KMS", slow, timeout=0.2)

    started = time.monotonic()
    try:
        result = FanOut(4).run(plan_units([fast, stuck], ["us-east-1"]))
    finally:
        release.set()

    assert time.monotonic() - started < 1.5
    assert result["vpcs"] == [{"vpcId": "vpc-1", "region": "us-east-1"}]
    assert result["kmsKeys"] == []
    assert result["errors"] == ["KMS (us-east-1): timed out after 0.2s"]


def test_units_run_in_parallel():
    barrier = threading.Barrier(3, timeout=2)

    def lister(region):
        barrier.wait()
        return [{"id": region}]

    svc = Service("instances", "EC2", lister, timeout=3)
    result = FanOut(3).run(plan_units([svc], ["a", "b", "c"]))

    assert sorted(r["region"] for r in result["instances"]) == ["a", "b", "c"]


def test_no_units_returns_empty_result():
    assert FanOut().run([]) == {}


def test_each_unit_deadline_counts_from_its_own_start():
    release = threading.Event()

    def slow(region):
        release.wait(1.6)
        return [{"id": region}]

    svc = Service("instances", "EC2", slow, timeout=0.5)
    started = time.monotonic()
    try:
        with pytest.raises(NoResultsError) as excinfo:
            FanOut(4).run(plan_units([svc], ["r1", "r2", "r3", "r4"]))
    finally:
        release.set()

    assert time.monotonic() - started < 1.2
    assert excinfo.value.errors == [
        f"EC2 ({region}): timed out after 0.5s" for region in ("r1", "r2", "r3", "r4")
    ]


def test_unit_finishing_past_its_deadline_is_a_timeout():
    def slow_ok(region):
        time.sleep(0.5)
        return [{"vpcId": "vpc-1"}]

    def late(region):
        time.sleep(0.3)
        return [{"keyId": "k-1"}]

    vpcs = Service("vpcs", "VPC", slow_ok, timeout=2)
    kms = Service("kmsKeys", "KMS", late, timeout=0.1)

    result = FanOut(2).run(plan_units([vpcs, kms], ["us-east-1"]))

    assert result["vpcs"] == [{"vpcId": "vpc-1", "region": "us-east-1"}]
    assert result["kmsKeys"] == []
    assert result["errors"] == ["KMS (us-east-1): timed out after 0.1s"]
