'''
Diagonal-covariance GMM acoustic model.

The model file is a torch checkpoint holding a dict with
    means:       [pdfs, mixtures, dim]  (or [pdfs, dim] for one Gaussian per pdf)
    variances:   same shape as means
    log_weights: [pdfs, mixtures]       (optional, uniform if missing)
'''

import logging
import math

import torch

logger = logging.getLogger(__name__)


class DiagGaussianModel:

    def __init__(self, means, variances, log_weights=None, var_floor=1e-6):
        means = torch.as_tensor(means, dtype=torch.float32)
        variances = torch.as_tensor(variances, dtype=torch.float32)
        if means.dim() == 2:
            means = means.unsqueeze(1)
            variances = variances.unsqueeze(1)
        if means.shape != variances.shape:
            raise ValueError(f"means {tuple(means.shape)} and variances {tuple(variances.shape)} differ in shape")
        num_pdfs, num_mix, _ = means.shape
        if log_weights is None:
            log_weights = torch.full((num_pdfs, num_mix), -math.log(num_mix))
        log_weights = torch.as_tensor(log_weights, dtype=torch.float32).reshape(num_pdfs, num_mix)

        self.means = means
        self.variances = variances.clamp_min(var_floor)
        self.log_weights = log_weights
        self._update_gconsts()

    def _update_gconsts(self):
        dim = self.means.shape[2]
        # log weight + log normaliser + the mean-only part of the exponent
        self.gconsts = (self.log_weights
                        - 0.5 * (dim * math.log(2 * math.pi) + torch.log(self.variances).sum(dim=2))
                        - 0.5 * (self.means ** 2 / self.variances).sum(dim=2))

    @classmethod
    def load(cls, path):
        state = torch.load(path, map_location="cpu")
        return cls(state["means"], state["variances"], state.get("log_weights"))

    def save(self, path):
        torch.save({"means": self.means, "variances": self.variances, "log_weights": self.log_weights}, path)

    @property
    def num_pdfs(self):
        return self.means.shape[0]

    @property
    def dim(self):
        return self.means.shape[2]

    def log_likelihoods(self, feats):
        """Per-frame, per-pdf log-likelihoods, [frames, pdfs]."""
        feats = torch.as_tensor(feats, dtype=torch.float32)
        if feats.shape[1] != self.dim:
            raise ValueError(f"feature dim {feats.shape[1]} does not match model dim {self.dim}")
        num_pdfs, num_mix, dim = self.means.shape
        inv_vars = (1.0 / self.variances).reshape(-1, dim)                # [P*M, D]
        means_invvars = (self.means / self.variances).reshape(-1, dim)
        quad = feats @ means_invvars.t() - 0.5 * (feats ** 2) @ inv_vars.t()  # [T, P*M]
        quad = quad.reshape(-1, num_pdfs, num_mix)
        return torch.logsumexp(self.gconsts + quad, dim=2)

    def boost_silence(self, pdfs, factor):
        """Scale the mixture weights of `pdfs` by `factor`."""
        if factor <= 0:
            raise ValueError("silence boosting factor must be positive")
        pdfs = torch.as_tensor(list(pdfs), dtype=torch.long)
        self.log_weights[pdfs] += math.log(factor)
        self._update_gconsts()
        logger.info("Boosted weights for %d pdfs, by factor of %g", len(pdfs), factor)
