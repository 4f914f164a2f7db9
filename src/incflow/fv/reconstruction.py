"""Cell-to-face reconstructions used by the Godunov predictor.

All functions work on padded cell arrays of shape ``(nx, ny, nz, ncomp)``
and return arrays of the same shape: ``lo[i]`` is the state of cell ``i``
extrapolated to its low face ``i-1/2`` and ``hi[i]`` the state at its high
face ``i+1/2``. Values within the stencil half-width of the array edge are
not meaningful; callers pad with enough ghost cells and discard them.
"""

import numpy as np

from ..datastructures import GodunovScheme

WENO_EPS = 1e-6

# Number of ghost cells each reconstruction needs on either side
STENCIL_WIDTH = {
    GodunovScheme.PLM: 2,
    GodunovScheme.PPM: 3,
    GodunovScheme.PPM_NOLIM: 3,
    GodunovScheme.WENO_JS: 3,
    GodunovScheme.WENO_Z: 3,
}


def shift(q, k, axis):
    """Value at ``i+k`` stored at ``i`` (periodic in the array, edges are junk)."""
    return np.roll(q, -k, axis=axis)


def mc_slope(q, axis):
    """Monotonized-central limited slope (cell-width units)."""
    dl = q - shift(q, -1, axis)
    dr = shift(q, 1, axis) - q
    dc = 0.5 * (dl + dr)
    lim = np.minimum(2.0 * np.abs(dl), 2.0 * np.abs(dr))
    slope = np.sign(dc) * np.minimum(lim, np.abs(dc))
    return np.where(dl * dr > 0.0, slope, 0.0)


def plm_trace(q, cfl, axis):
    """Piecewise-linear states traced a half step with Courant number ``cfl``."""
    slope = mc_slope(q, axis)
    lo = q - 0.5 * (1.0 + np.minimum(cfl, 0.0)) * slope
    hi = q + 0.5 * (1.0 - np.maximum(cfl, 0.0)) * slope
    return lo, hi


def ppm_edges(q, axis, limit=True):
    """Fourth-order interface values ``(a_{i-1/2}, a_{i+1/2})`` of every cell."""
    qm1 = shift(q, -1, axis)
    qp1 = shift(q, 1, axis)
    qp2 = shift(q, 2, axis)
    a_hi = 7.0 / 12.0 * (q + qp1) - 1.0 / 12.0 * (qm1 + qp2)
    if limit:
        a_hi = np.clip(a_hi, np.minimum(q, qp1), np.maximum(q, qp1))
    a_lo = shift(a_hi, -1, axis)
    if not limit:
        return a_lo, a_hi

    # Colella-Woodward monotonicity constraints
    extremum = (a_hi - q) * (q - a_lo) <= 0.0
    a_lo = np.where(extremum, q, a_lo)
    a_hi = np.where(extremum, q, a_hi)
    d = a_hi - a_lo
    curv = d * (q - 0.5 * (a_lo + a_hi))
    d2 = d * d / 6.0
    a_lo = np.where(curv > d2, 3.0 * q - 2.0 * a_hi, a_lo)
    a_hi = np.where(curv < -d2, 3.0 * q - 2.0 * a_lo, a_hi)
    return a_lo, a_hi


def _weno_face(vm2, vm1, v0, vp1, vp2, z_weights):
    """Fifth-order WENO value at the face between ``v0`` and ``vp1``."""
    beta0 = 13.0 / 12.0 * (vm2 - 2.0 * vm1 + v0) ** 2 + 0.25 * (vm2 - 4.0 * vm1 + 3.0 * v0) ** 2
    beta1 = 13.0 / 12.0 * (vm1 - 2.0 * v0 + vp1) ** 2 + 0.25 * (vm1 - vp1) ** 2
    beta2 = 13.0 / 12.0 * (v0 - 2.0 * vp1 + vp2) ** 2 + 0.25 * (3.0 * v0 - 4.0 * vp1 + vp2) ** 2

    d0, d1, d2 = 0.1, 0.6, 0.3
    if z_weights:
        tau5 = np.abs(beta0 - beta2)
        a0 = d0 * (1.0 + tau5 / (beta0 + WENO_EPS))
        a1 = d1 * (1.0 + tau5 / (beta1 + WENO_EPS))
        a2 = d2 * (1.0 + tau5 / (beta2 + WENO_EPS))
    else:
        a0 = d0 / (WENO_EPS + beta0) ** 2
        a1 = d1 / (WENO_EPS + beta1) ** 2
        a2 = d2 / (WENO_EPS + beta2) ** 2
    asum = a0 + a1 + a2

    p0 = (2.0 * vm2 - 7.0 * vm1 + 11.0 * v0) / 6.0
    p1 = (-vm1 + 5.0 * v0 + 2.0 * vp1) / 6.0
    p2 = (2.0 * v0 + 5.0 * vp1 - vp2) / 6.0
    return (a0 * p0 + a1 * p1 + a2 * p2) / asum


def weno_edges(q, axis, z_weights=False):
    """WENO-JS (or WENO-Z) interface values ``(a_{i-1/2}, a_{i+1/2})``."""
    s = {k: shift(q, k, axis) for k in (-2, -1, 1, 2)}
    a_hi = _weno_face(s[-2], s[-1], q, s[1], s[2], z_weights)
    a_lo = _weno_face(s[2], s[1], q, s[-1], s[-2], z_weights)
    return a_lo, a_hi


def parabolic_trace(q, a_lo, a_hi, cfl):
    """Average of the parabola over the domain of dependence of each face."""
    sigma = np.abs(cfl)
    d = a_hi - a_lo
    a6 = 6.0 * (q - 0.5 * (a_lo + a_hi))
    hi = np.where(cfl > 0.0, a_hi - 0.5 * sigma * (d - (1.0 - 2.0 / 3.0 * sigma) * a6), a_hi)
    lo = np.where(cfl < 0.0, a_lo + 0.5 * sigma * (d + (1.0 - 2.0 / 3.0 * sigma) * a6), a_lo)
    return lo, hi


def trace(q, cfl, axis, scheme: GodunovScheme):
    """Time-centred face states of every cell along ``axis``.

    ``cfl`` is the cell-centred Courant number ``u*dt/dx`` (broadcastable
    against ``q``). Returns ``(lo, hi)``.
    """
    if scheme is GodunovScheme.PLM:
        return plm_trace(q, cfl, axis)
    if scheme is GodunovScheme.PPM:
        a_lo, a_hi = ppm_edges(q, axis, limit=True)
    elif scheme is GodunovScheme.PPM_NOLIM:
        a_lo, a_hi = ppm_edges(q, axis, limit=False)
    else:
        a_lo, a_hi = weno_edges(q, axis, z_weights=scheme is GodunovScheme.WENO_Z)
    return parabolic_trace(q, a_lo, a_hi, cfl)
