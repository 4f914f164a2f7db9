"""Cell/face averaging and coarse-fine synchronisation helpers."""

import numpy as np

from ..core.field import FieldLoc


def _block_mean(arr, axes, r):
    """Mean over non-overlapping ``r``-blocks along ``axes`` (others untouched)."""
    shape = []
    reduce_axes = []
    for d, n in enumerate(arr.shape):
        if d in axes:
            shape.extend([n // r, r])
            reduce_axes.append(len(shape) - 1)
        else:
            shape.append(n)
    return arr.reshape(shape).mean(axis=tuple(reduce_axes))


def average_down_cells(fine, coarse, fine_box, coarse_origin, r):
    """Overwrite covered coarse cells by the mean of their ``r**3`` children."""
    cbox = fine_box.coarsen(r)
    coarse[cbox.slices(coarse_origin)] = _block_mean(fine, (0, 1, 2), r)


def average_down_face(fine, coarse, direction, fine_box, coarse_origin, r):
    """Area-weighted average of fine faces onto the coincident coarse faces.

    Every ``r``-th fine face plane normal to ``direction`` lies on a coarse
    face; its ``r*r`` fine faces are averaged onto it, so the area-weighted
    sum of fine fluxes equals the coarse flux times the coarse face area.
    """
    take = [slice(None)] * 3
    take[direction] = slice(None, None, r)
    tangential = tuple(d for d in range(3) if d != direction)
    avg = _block_mean(fine[tuple(take)], tangential, r)

    cbox = fine_box.coarsen(r)
    dst = list(cbox.slices(coarse_origin))
    dst[direction] = slice(dst[direction].start, dst[direction].stop + 1)
    coarse[tuple(dst)] = avg


def average_down_faces(fine_faces, coarse_faces, fine_box, coarse_origin, r):
    for d in range(3):
        average_down_face(fine_faces[d], coarse_faces[d], d, fine_box, coarse_origin, r)


def average_down(field, mesh):
    """Average a cell or face field down from the finest level to level 0."""
    for lev in range(mesh.num_active_levels() - 1, 0, -1):
        fine_box = mesh[lev].box
        origin = mesh[lev - 1].box.lo
        if field.location is FieldLoc.CELL:
            average_down_cells(field(lev), field(lev - 1), fine_box, origin, mesh.ref_ratio)
        else:
            average_down_face(
                field(lev), field(lev - 1), field.location.value, fine_box, origin, mesh.ref_ratio
            )


def average_down_face_fields(faces, mesh):
    """Average the three face-normal fields (``u_mac``, ``v_mac``, ``w_mac``) down."""
    for lev in range(mesh.num_active_levels() - 1, 0, -1):
        average_down_faces(
            [f(lev) for f in faces],
            [f(lev - 1) for f in faces],
            mesh[lev].box,
            mesh[lev - 1].box.lo,
            mesh.ref_ratio,
        )


def face_average(padded, direction, ng):
    """Arithmetic average of a ``ng``-padded cell array onto the valid faces."""
    sl = [slice(ng, -ng or None)] * 3
    lo = list(sl)
    hi = list(sl)
    n = padded.shape[direction] - 2 * ng
    lo[direction] = slice(ng - 1, ng + n)
    hi[direction] = slice(ng, ng + n + 1)
    return 0.5 * (padded[tuple(lo)] + padded[tuple(hi)])


def face_difference(padded, direction, ng):
    """``q[i] - q[i-1]`` on the valid faces of a ``ng``-padded cell array."""
    sl = [slice(ng, -ng or None)] * 3
    lo = list(sl)
    hi = list(sl)
    n = padded.shape[direction] - 2 * ng
    lo[direction] = slice(ng - 1, ng + n)
    hi[direction] = slice(ng, ng + n + 1)
    return padded[tuple(hi)] - padded[tuple(lo)]


def divergence(faces, inv_dx):
    """Cell divergence of three face-normal arrays."""
    return (
        (faces[0][1:] - faces[0][:-1]) * inv_dx[0]
        + (faces[1][:, 1:] - faces[1][:, :-1]) * inv_dx[1]
        + (faces[2][:, :, 1:] - faces[2][:, :, :-1]) * inv_dx[2]
    )
