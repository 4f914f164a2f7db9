"""Sparse assembly of the variable-coefficient Laplacian on one level box.

The assembled matrix is ``A = -L`` with

    L phi = sum_d [ b_{f+} (phi_{i+1} - phi_i) - b_{f-} (phi_i - phi_{i-1}) ] / dxi_d**2

so that ``A`` is symmetric positive (semi-)definite. Cells are numbered
``(i*ny + j)*nz + k``.
"""

import numpy as np
from numba import njit

# Boundary codes for the low/high box faces of each direction
BC_NEUMANN = 0
BC_DIRICHLET_FACE = 1
BC_PERIODIC = 2
BC_DIRICHLET_GHOST = 3


@njit(cache=True)
def assemble_laplacian(bx, by, bz, bc_lo, bc_hi, mask, idxi2):
    """Triplets of ``-L`` for face coefficients ``bx, by, bz``.

    Each active cell emits its diagonal once plus one entry per coupled
    neighbour, so a cell contributes at most 7 triplets.

    Parameters
    ----------
    bx, by, bz : ndarray
        Face coefficients of shapes ``(nx+1, ny, nz)``, ``(nx, ny+1, nz)``
        and ``(nx, ny, nz+1)``.
    bc_lo, bc_hi : ndarray of int64
        Boundary code of the low and high box face per direction.
    mask : ndarray of int32
        Active cells (1) and cells removed from the system (0). Removed
        cells get identity rows; couplings into them are dropped.
    idxi2 : ndarray
        ``1/dxi_d**2`` per direction.
    """
    nx, ny, nz = mask.shape
    n_cells = nx * ny * nz
    max_nnz = 7 * n_cells
    row = np.zeros(max_nnz, dtype=np.int64)
    col = np.zeros(max_nnz, dtype=np.int64)
    data = np.zeros(max_nnz, dtype=np.float64)
    idx = 0

    for i in range(nx):
        for j in range(ny):
            for k in range(nz):
                P = (i * ny + j) * nz + k
                if mask[i, j, k] == 0:
                    row[idx] = P; col[idx] = P; data[idx] = 1.0; idx += 1
                    continue

                diag = 0.0
                for d in range(3):
                    if d == 0:
                        n = nx
                        c = i
                        b_lo = bx[i, j, k]
                        b_hi = bx[i + 1, j, k]
                    elif d == 1:
                        n = ny
                        c = j
                        b_lo = by[i, j, k]
                        b_hi = by[i, j + 1, k]
                    else:
                        n = nz
                        c = k
                        b_lo = bz[i, j, k]
                        b_hi = bz[i, j, k + 1]

                    for side in range(2):
                        coef = (b_lo if side == 0 else b_hi) * idxi2[d]
                        nb = c - 1 if side == 0 else c + 1
                        code = -1
                        if nb < 0:
                            code = bc_lo[d]
                            nb = n - 1
                        elif nb >= n:
                            code = bc_hi[d]
                            nb = 0

                        if code == BC_NEUMANN:
                            continue
                        if code == BC_DIRICHLET_FACE:
                            diag += 2.0 * coef
                            continue
                        if code == BC_DIRICHLET_GHOST:
                            diag += coef
                            continue

                        # interior or periodic neighbour
                        diag += coef
                        if d == 0:
                            ni, nj, nk = nb, j, k
                        elif d == 1:
                            ni, nj, nk = i, nb, k
                        else:
                            ni, nj, nk = i, j, nb
                        if mask[ni, nj, nk] != 0:
                            row[idx] = P; col[idx] = (ni * ny + nj) * nz + nk; data[idx] = -coef; idx += 1

                row[idx] = P; col[idx] = P; data[idx] = diag; idx += 1

    return row[:idx], col[:idx], data[:idx]
