from __future__ import annotations

import numpy as np
import pytest

from pcfeat.cloud import PointCloud, concatenate
from pcfeat.utils.error_tracker import CloudError


def test_unorganized_defaults():
    cloud = PointCloud(np.zeros((7, 3)))
    assert len(cloud) == cloud.size == 7
    assert (cloud.width, cloud.height) == (7, 1)
    assert not cloud.is_organized
    assert cloud.is_dense


def test_organized_cloud_must_match_size():
    cloud = PointCloud(np.zeros((12, 3)), width=4, height=3)
    assert cloud.is_organized
    with pytest.raises(CloudError):
        PointCloud(np.zeros((12, 3)), width=5, height=3)


def test_bad_shapes_rejected():
    with pytest.raises(CloudError):
        PointCloud(np.zeros((4, 2)))
    with pytest.raises(CloudError):
        PointCloud(np.zeros((4, 3)), intensity=np.zeros(3))
    with pytest.raises(CloudError):
        PointCloud(np.zeros((4, 3)), rgb=np.zeros((4, 4)))


def test_fields_are_copied_and_read_only():
    xyz = np.arange(12, dtype=float).reshape(4, 3)
    cloud = PointCloud(xyz)
    xyz[0, 0] = 100.0
    assert cloud.xyz[0, 0] == 0.0
    with pytest.raises(ValueError):
        cloud.xyz[0, 0] = 1.0


def test_set_point_leaves_density_flag_alone():
    cloud = PointCloud(np.zeros((3, 3)), intensity=np.zeros(3))
    cloud.set_point(1, xyz=[np.nan, 0.0, 0.0], intensity=5.0)
    assert np.isnan(cloud.xyz[1, 0])
    assert cloud.intensity[1] == 5.0
    assert cloud.is_dense
    assert not cloud.recompute_is_dense()
    assert not cloud.is_dense
    with pytest.raises(CloudError):
        cloud.set_point(0, label=3)


def test_select_keeps_fields_and_flag():
    cloud = PointCloud(
        np.arange(15, dtype=float).reshape(5, 3),
        label=[1, 2, 3, 4, 5],
        is_dense=False,
    )
    sub = cloud.select([4, 0])
    assert np.array_equal(sub.xyz, cloud.xyz[[4, 0]])
    assert list(sub.label) == [5, 1]
    assert not sub.is_dense


def test_concatenate_false_wins():
    a = PointCloud(np.zeros((2, 3)), intensity=[1.0, 2.0])
    b = PointCloud(np.ones((3, 3)), intensity=[3.0, 4.0, 5.0], is_dense=False)
    c = concatenate(a, b)
    assert len(c) == 5
    assert not c.is_dense
    assert list(c.intensity) == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert concatenate(a, a).is_dense


def test_concatenate_drops_partial_fields():
    a = PointCloud(np.zeros((2, 3)), rgb=np.zeros((2, 3)))
    b = PointCloud(np.ones((1, 3)))
    assert concatenate(a, b).rgb is None


def test_open3d_round_trip():
    rgb = np.array([[255.0, 0.0, 0.0], [0.0, 127.5, 255.0]])
    cloud = PointCloud(np.array([[0.0, 1.0, 2.0], [3.0, 4.0, 5.0]]), rgb=rgb)
    back = PointCloud.from_o3d(cloud.to_o3d())
    assert np.allclose(back.xyz, cloud.xyz)
    assert np.allclose(back.rgb, rgb)
    assert back.is_dense
