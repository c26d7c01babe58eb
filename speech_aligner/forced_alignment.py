'''
Viterbi forced alignment over a compiled linear decoding graph.

Every frame is assigned to exactly one graph state; each state can stay on
itself or be entered from its predecessor states (the previous HMM state, or
across an optional silence). The result is the frame-level unit path.
'''

import logging

import torch

from .errors import AlignmentError

logger = logging.getLogger(__name__)


class ViterbiAligner:
    """
    Beam-pruned Viterbi decoder with one retry at a wider beam.
    """

    def __init__(self, acoustic_scale=0.1, beam=200.0, retry_beam=0.0):
        '''
        Args:
            acoustic_scale: Scale applied to acoustic log-likelihoods during the search.
            beam: Pruning beam (scaled log-likelihood units).
            retry_beam: Beam for a second attempt when the first one does not reach
                a final state. 0 disables the retry.
        '''
        self.acoustic_scale = acoustic_scale
        self.beam = beam
        self.retry_beam = retry_beam
        self._neg_inf = float("-inf")

    def _pred_table(self, graph):
        num_states = len(graph)
        max_preds = max([len(p) for p in graph.preds] + [1])
        # index num_states points at an always -inf sentinel
        table = torch.full((num_states, max_preds), num_states, dtype=torch.long)
        for s, preds in enumerate(graph.preds):
            if preds:
                table[s, :len(preds)] = torch.tensor(preds, dtype=torch.long)
        return table

    def _viterbi_decode(self, emissions, graph, beam):
        """
        Args:
            emissions: Scaled log-likelihood of each graph state at each frame [T, S].
            graph: DecodingGraph.
            beam: Pruning beam.
        Returns:
            state path (list of state indices) or None if no final state was reached.
        """
        num_frames, num_states = emissions.shape
        pred_table = self._pred_table(graph)
        sentinel = torch.tensor([self._neg_inf])

        dp = torch.full((num_states,), self._neg_inf)
        initial = torch.tensor(graph.initial, dtype=torch.long)
        dp[initial] = emissions[0, initial]
        backpointers = torch.zeros((num_frames, num_states), dtype=torch.long)

        for t in range(1, num_frames):
            prev_ext = torch.cat([dp, sentinel])
            stay_scores = dp.unsqueeze(1)
            enter_scores = prev_ext[pred_table]
            all_scores = torch.cat([stay_scores, enter_scores], dim=1)
            all_prev_states = torch.cat([torch.arange(num_states).unsqueeze(1), pred_table], dim=1)

            best_scores, best_transitions = all_scores.max(dim=1)
            backpointers[t] = all_prev_states[torch.arange(num_states), best_transitions]
            dp = best_scores + emissions[t]

            if beam > 0:
                best = dp.max()
                if best > self._neg_inf:
                    dp = torch.where(dp < best - beam, torch.full_like(dp, self._neg_inf), dp)

        final = torch.tensor(graph.final, dtype=torch.long)
        final_scores = dp[final]
        if not torch.isfinite(final_scores).any():
            return None
        state = int(final[torch.argmax(final_scores)])

        path_states = [0] * num_frames
        path_states[-1] = state
        for t in range(num_frames - 1, 0, -1):
            state = int(backpointers[t, state])
            path_states[t - 1] = state
        return path_states

    def align(self, log_likes, graph, trans_model, utt=""):
        """
        Align one utterance.

        Args:
            log_likes: Acoustic log-likelihoods per frame and pdf [T, pdfs].
            graph: Non-empty DecodingGraph.
            trans_model: TransitionModel mapping graph units to pdfs.
            utt: Utterance id, for log messages.
        Returns:
            (unit path, acoustic log-likelihood of the path)
        """
        num_frames = log_likes.shape[0]
        if num_frames == 0:
            raise AlignmentError(f"zero-length utterance {utt}")
        if graph.is_empty():
            raise AlignmentError(f"empty decoding graph for utterance {utt}")
        if num_frames < graph.num_mandatory_states():
            raise AlignmentError(
                f"utterance {utt} has {num_frames} frames but needs at least {graph.num_mandatory_states()}")

        pdfs = torch.tensor([trans_model.transition_id_to_pdf(u) for u in graph.units], dtype=torch.long)
        state_likes = log_likes[:, pdfs]
        emissions = self.acoustic_scale * state_likes

        path_states = self._viterbi_decode(emissions, graph, self.beam)
        if path_states is None and self.retry_beam > 0:
            logger.warning("Retrying utterance %s with beam %g", utt, self.retry_beam)
            path_states = self._viterbi_decode(emissions, graph, self.retry_beam)
        if path_states is None:
            raise AlignmentError(f"did not reach end-state for utterance {utt}")

        frames = torch.arange(num_frames)
        states = torch.tensor(path_states, dtype=torch.long)
        score = float(state_likes[frames, states].sum())
        return [graph.units[s] for s in path_states], score
