# ABOUTME: Implements the Laplace-approximated deviance of a binomial logit GLMM.
# ABOUTME: Finds conditional modes by penalized IRLS over sparse random-effect designs.

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import splu
from scipy.special import expit, xlogy

PROB_EPS = 1e-12


def bernoulli_loglik(y: np.ndarray, mu: np.ndarray) -> float:
    """Binomial log-likelihood; fractional responses use the same quasi form."""

    mu = np.clip(mu, PROB_EPS, 1.0 - PROB_EPS)
    return float(np.sum(xlogy(y, mu) + xlogy(1.0 - y, 1.0 - mu)))


@dataclass
class ModeResult:
    beta: np.ndarray
    u: np.ndarray
    mu: np.ndarray
    iterations: int
    converged: bool


class LaplaceProblem:
    """
    Binomial GLMM with independent random-intercept blocks.

    Random effects are b = Lambda(theta) u with u ~ N(0, I); theta holds one
    standard deviation per block of Z's columns. The Laplace deviance is

        -2 log p(y | u_hat) + ||u_hat||^2 + log det(Lambda Z' W Z Lambda + I)

    evaluated at the conditional mode u_hat.
    """

    def __init__(
        self,
        X: np.ndarray,
        Z: sparse.spmatrix,
        y: np.ndarray,
        block_sizes: Sequence[int],
        max_iter: int = 50,
        tol: float = 1e-10,
    ) -> None:
        self.X = np.asarray(X, dtype=float)
        self.Z = sparse.csc_matrix(Z)
        self.y = np.asarray(y, dtype=float)
        self.block_sizes = list(block_sizes)
        self.max_iter = max_iter
        self.tol = tol
        self.n, self.p = self.X.shape
        self.q = self.Z.shape[1]
        self._identity = sparse.identity(self.q, format="csc")

    def expand(self, theta: Sequence[float]) -> np.ndarray:
        return np.repeat(np.asarray(theta, dtype=float), self.block_sizes)

    def scaled_z(self, theta: Sequence[float]) -> sparse.csc_matrix:
        return sparse.csc_matrix(self.Z @ sparse.diags(self.expand(theta)))

    def penalized_loglik(self, beta: np.ndarray, u: np.ndarray, A: sparse.spmatrix) -> float:
        mu = expit(self.X @ beta + A @ u)
        return bernoulli_loglik(self.y, mu) - 0.5 * float(u @ u)

    def joint_mode(self, theta: Sequence[float], beta: np.ndarray, u: np.ndarray = None) -> ModeResult:
        """Maximize the penalized log-likelihood over fixed effects and u together."""

        A = self.scaled_z(theta)
        beta = np.array(beta, dtype=float)
        u = np.zeros(self.q) if u is None else np.array(u, dtype=float)
        objective = self.penalized_loglik(beta, u, A)

        converged = False
        iteration = 0
        for iteration in range(1, self.max_iter + 1):
            mu = expit(self.X @ beta + A @ u)
            w = mu * (1.0 - mu)
            r = self.y - mu
            gradient = np.concatenate([self.X.T @ r, A.T @ r - u])

            WX = self.X * w[:, None]
            h_bb = self.X.T @ WX
            h_ub = np.asarray(A.T @ WX)
            h_uu = sparse.csc_matrix(A.T @ sparse.diags(w) @ A) + self._identity
            hessian = sparse.bmat(
                [[sparse.csc_matrix(h_bb), sparse.csc_matrix(h_ub.T)], [sparse.csc_matrix(h_ub), h_uu]],
                format="csc",
            )
            step = splu(hessian).solve(gradient)

            beta_new, u_new, new_objective, stalled = self._halve(
                lambda t: (beta + t * step[: self.p], u + t * step[self.p :]),
                lambda b, v: self.penalized_loglik(b, v, A),
                objective,
            )
            change = abs(new_objective - objective)
            beta, u, objective = beta_new, u_new, new_objective
            if stalled:
                break
            if change <= self.tol * (abs(objective) + self.tol):
                converged = True
                break

        mu = expit(self.X @ beta + A @ u)
        return ModeResult(beta=beta, u=u, mu=mu, iterations=iteration, converged=converged)

    def conditional_mode(self, theta: Sequence[float], beta: np.ndarray, u: np.ndarray = None) -> ModeResult:
        """Maximize the penalized log-likelihood over u with fixed effects held fixed."""

        A = self.scaled_z(theta)
        beta = np.asarray(beta, dtype=float)
        u = np.zeros(self.q) if u is None else np.array(u, dtype=float)
        offset = self.X @ beta
        objective = self.penalized_loglik(beta, u, A)

        converged = False
        iteration = 0
        for iteration in range(1, self.max_iter + 1):
            mu = expit(offset + A @ u)
            w = mu * (1.0 - mu)
            gradient = A.T @ (self.y - mu) - u
            system = sparse.csc_matrix(A.T @ sparse.diags(w) @ A) + self._identity
            step = splu(sparse.csc_matrix(system)).solve(gradient)

            _, u_new, new_objective, stalled = self._halve(
                lambda t: (beta, u + t * step),
                lambda b, v: self.penalized_loglik(b, v, A),
                objective,
            )
            change = abs(new_objective - objective)
            u, objective = u_new, new_objective
            if stalled:
                break
            if change <= self.tol * (abs(objective) + self.tol):
                converged = True
                break

        mu = expit(offset + A @ u)
        return ModeResult(beta=beta, u=u, mu=mu, iterations=iteration, converged=converged)

    def deviance(self, theta: Sequence[float], mode: ModeResult) -> float:
        A = self.scaled_z(theta)
        w = mode.mu * (1.0 - mode.mu)
        system = sparse.csc_matrix(A.T @ sparse.diags(w) @ A) + self._identity
        return -2.0 * bernoulli_loglik(self.y, mode.mu) + float(mode.u @ mode.u) + _logdet(system)

    def profiled_deviance(self, theta: Sequence[float], beta_start: np.ndarray) -> float:
        """First-stage objective: fixed effects enter through the joint mode."""

        mode = self.joint_mode(theta, beta_start)
        return self.deviance(theta, mode)

    def laplace_deviance(self, params: np.ndarray, u_start: np.ndarray) -> float:
        """Second-stage objective over [theta..., beta...]."""

        k = len(self.block_sizes)
        theta, beta = params[:k], params[k:]
        mode = self.conditional_mode(theta, beta, u_start)
        return self.deviance(theta, mode)

    def fixed_covariance(self, theta: Sequence[float], mode: ModeResult) -> np.ndarray:
        """Covariance of fixed effects from the Schur complement of the joint Hessian."""

        A = self.scaled_z(theta)
        w = mode.mu * (1.0 - mode.mu)
        WX = self.X * w[:, None]
        h_bb = self.X.T @ WX
        h_ub = np.asarray(A.T @ WX)
        h_uu = sparse.csc_matrix(A.T @ sparse.diags(w) @ A) + self._identity
        solved = splu(sparse.csc_matrix(h_uu)).solve(h_ub)
        schur = h_bb - h_ub.T @ solved
        return np.linalg.inv(schur)

    @staticmethod
    def _halve(
        propose, evaluate, current: float, min_step: float = 1e-8
    ) -> Tuple[np.ndarray, np.ndarray, float, bool]:
        """
        Step halving until the penalized log-likelihood does not decrease.

        Returns the accepted point, its objective and whether halving stalled,
        in which case the current point is returned unchanged.
        """

        t = 1.0
        while True:
            beta, u = propose(t)
            value = evaluate(beta, u)
            if np.isfinite(value) and value >= current - 1e-10 * (abs(current) + 1.0):
                return beta, u, value, False
            t *= 0.5
            if t < min_step:
                beta, u = propose(0.0)
                return beta, u, current, True


def _logdet(matrix: sparse.spmatrix) -> float:
    """Log-determinant of a symmetric positive-definite sparse matrix."""

    lu = splu(sparse.csc_matrix(matrix))
    return float(np.sum(np.log(np.abs(lu.U.diagonal()))))
