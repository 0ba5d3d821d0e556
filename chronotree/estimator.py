import abc
from copy import deepcopy
import numpy as np
from scipy.optimize import minimize
from scipy.special import gammaln
from . import config as ctconf
from . import ConfigError, ValidationError, EstimationError
from .rooted_tree import RootedTree
from .utils import verbose_logger

# SLSQP exit modes: incompatible constraints, singular LSQ subproblem, positive directional derivative
SLSQP_BREAKDOWN = (4, 6, 8)


class EstimationResult(object):
    """
    Summary of a divergence time estimation attached to the time tree as
    `tree.estimation`.
    """
    def __init__(self, log_likelihood, penalty, smoothing, model, n_params,
                 n_iterations=0, message=''):
        self.log_likelihood = log_likelihood
        self.penalty = penalty
        self.smoothing = smoothing
        self.model = model
        self.n_params = n_params
        self.n_iterations = n_iterations
        self.message = message

    @property
    def penalized_log_likelihood(self):
        return self.log_likelihood - self.smoothing*self.penalty

    @property
    def phiic(self):
        """penalized information criterion -2 logL + 2 k + lambda * penalty"""
        return -2*self.log_likelihood + 2*self.n_params + self.smoothing*self.penalty

    def __str__(self):
        return ('Penalized likelihood (%s clock, lambda=%g):\n --log-lik:\t%1.4f\n'
                ' --penalized log-lik:\t%1.4f\n --PHIIC:\t%1.2f\n --iterations:\t%d\n --%s\n'
                %(self.model, self.smoothing, self.log_likelihood, self.penalized_log_likelihood,
                  self.phiic, self.n_iterations, self.message))


class DivergenceTimeEstimator(abc.ABC):
    """
    Interface of divergence time estimators. Implementations turn a rooted
    phylogram and a calibration table into a time tree.
    """

    @abc.abstractmethod
    def estimate(self, tree, calibrations):
        """
        Estimate node ages.

        Parameters
        ----------
         tree : RootedTree
            rooted tree with branch lengths in substitutions per site
         calibrations : CalibrationTable
            calibration table resolved against `tree`

        Returns
        -------
         timetree : Bio.Phylo.BaseTree.Tree
            new tree with branch lengths in time units

        Raises
        ------
         EstimationError
            if no valid time tree could be found
        """
        pass


class PenalizedLikelihood(DivergenceTimeEstimator):
    """
    Penalized likelihood dating of a rooted tree. Observed branch lengths are
    modeled as Poisson variables with mean rate*duration. Differences between
    relative rates are penalized with weight `smoothing`:

    :code:`strict` - one rate for all branches

    :code:`relaxed` - autocorrelated rates, squared differences between the
    rates of parent and child branches and the variance of the rates of the
    basal branches are penalized

    :code:`uncorrelated` - squared deviations of all branch rates relative to
    their mean are penalized
    """

    def __init__(self, smoothing=ctconf.SMOOTHING, model=ctconf.MODEL, seq_len=None,
                 control=None, rng_seed=None, verbose=ctconf.VERBOSE, logger=None):
        """
        Parameters
        ----------
         smoothing : float
            positive weight of the rate penalty (lambda)

         model : str
            one of 'strict', 'relaxed', 'uncorrelated'

         seq_len : int, optional
            sequence length. If given, branch lengths are converted to expected
            numbers of substitutions before computing the Poisson likelihood.

         control : dict, optional
            overrides of the optimizer settings 'tol', 'iter_max', 'max_init_tries',
            'min_rate', 'min_duration', 'soft_bound_weight', 'bound_tol', 'max_restarts'

         rng_seed : int, optional
            seed for the random starting ages used when the default start fails
        """
        try:
            smoothing = float(smoothing)
        except (TypeError, ValueError):
            raise ConfigError("PenalizedLikelihood: smoothing needs to be a number, got %s"%str(smoothing)) from None
        if not (np.isfinite(smoothing) and smoothing>0):
            raise ConfigError("PenalizedLikelihood: smoothing needs to be positive, got %s"%str(smoothing))
        if model not in ctconf.MODELS:
            raise ConfigError("PenalizedLikelihood: unknown rate model '%s', choose one of %s"
                              %(model, ", ".join(ctconf.MODELS)))
        if seq_len is not None and not seq_len>0:
            raise ConfigError("PenalizedLikelihood: seq_len needs to be positive, got %s"%str(seq_len))

        self.smoothing = smoothing
        self.model = model
        self.seq_len = seq_len
        self.control = {'tol':ctconf.TOL, 'iter_max':ctconf.ITER_MAX,
                        'max_init_tries':ctconf.MAX_INIT_TRIES, 'min_rate':ctconf.MIN_RATE,
                        'min_duration':ctconf.MIN_DURATION, 'soft_bound_weight':ctconf.SOFT_BOUND_WEIGHT,
                        'bound_tol':ctconf.BOUND_TOL, 'max_restarts':ctconf.MAX_RESTARTS}
        if control:
            unknown = [k for k in control if k not in self.control]
            if unknown:
                raise ConfigError("PenalizedLikelihood: unknown control parameters %s"%", ".join(unknown))
            self.control.update(control)
        self.rng = np.random.default_rng(rng_seed)
        self.logger = logger or verbose_logger(verbose)


####################################################################
## SET-UP
####################################################################
    def _setup(self, tree, calibrations):
        """
        Number internal nodes and branches and collect the calibrated nodes.
        Internal nodes are stored in preorder, the root has position 0.
        """
        self.internal = tree.tree.get_nonterminals(order='preorder')
        self.n_nodes = len(self.internal)
        node_pos = {n:ni for ni, n in enumerate(self.internal)}

        self.edges = [c for c in tree.tree.find_clades(order='preorder') if c is not tree.tree.root]
        self.n_edges = len(self.edges)
        edge_pos = {c:ei for ei, c in enumerate(self.edges)}
        self.parent_pos = np.array([node_pos[c.up] for c in self.edges], dtype=int)
        self.child_pos = np.array([node_pos.get(c, -1) for c in self.edges], dtype=int)
        self.internal_edge = self.child_pos>=0

        scale = self.seq_len or 1.0
        self.x = np.array([c.branch_length for c in self.edges], dtype=float)*scale
        if self.x.sum()<=0:
            raise EstimationError("PenalizedLikelihood: all branch lengths are zero")
        zero_tips = [c.name for c in self.edges if c.is_terminal() and c.branch_length<ctconf.MIN_DURATION]
        if zero_tips:
            self.logger("PenalizedLikelihood: zero length terminal branches for %s"%", ".join(zero_tips),
                        2, warn=True)
        self.lgamma_const = np.sum(gammaln(self.x+1))

        # rate parameters: one per branch, or a single one for the strict clock
        if self.model=='strict':
            self.rate_index = np.zeros(self.n_edges, dtype=int)
        else:
            self.rate_index = np.arange(self.n_edges)
        self.n_rates = self.rate_index.max()+1
        non_basal = [ei for ei, c in enumerate(self.edges) if c.up is not tree.tree.root]
        self.child_edges = np.array(non_basal, dtype=int)
        self.parent_edges = np.array([edge_pos[self.edges[ei].up] for ei in non_basal], dtype=int)
        self.basal = np.array([ei for ei, c in enumerate(self.edges) if c.up is tree.tree.root], dtype=int)

        self.calibrated = {}
        for r in calibrations:
            try:
                node = tree.node(r.node)
            except ConfigError:
                raise ValidationError("calibration %d refers to node %s which is not in the tree"
                                      %(r.position, str(r.node))) from None
            if node.is_terminal():
                raise ValidationError("calibration %d refers to tip %s, tips are not calibration targets"
                                      %(r.position, node.name))
            self.calibrated[node_pos[node]] = r


    def _initial_ages(self, attempt):
        """
        Starting ages: calibrated nodes in the middle of their interval (random
        within the interval for later attempts), an uncalibrated root at three
        times the largest bound, remaining nodes interpolated linearly along
        root-to-tip paths.
        """
        ages = {}
        for pos, r in self.calibrated.items():
            ages[self.internal[pos]] = 0.5*(r.age_min+r.age_max) if attempt==0 \
                                       else self.rng.uniform(r.age_min, r.age_max)
        root = self.internal[0]
        if root not in ages:
            ages[root] = 3*max([r.age_max for r in self.calibrated.values()] or [1.0/3])

        paths = []
        for tip in (c for c in self.edges if c.is_terminal()):
            path = [tip]
            while path[-1].up is not None:
                path.append(path[-1].up)
            ages[tip] = 0.0
            paths.append(path[::-1])

        # fill the paths with most known ages first
        for path in sorted(paths, key=lambda p:-sum(n in ages for n in p)):
            i = 1
            while i<len(path):
                if path[i] not in ages:
                    j = i+1
                    while path[j] not in ages:
                        j += 1
                    nb_val = j-i
                    step = (ages[path[i-1]] - ages[path[j]])/(nb_val+1)
                    for k in range(nb_val):
                        ages[path[i+k]] = ages[path[i-1]] - step*(k+1)
                    i = j+1
                else:
                    i += 1

        return np.array([ages[n] for n in self.internal])


    def _durations(self, a):
        a_child = np.where(self.internal_edge, a[self.child_pos], 0.0)
        return a[self.parent_pos] - a_child


    def _find_start(self, first_attempt=0):
        for attempt in range(first_attempt, first_attempt+self.control['max_init_tries']):
            ages = self._initial_ages(attempt)
            min_dur = self.control['min_duration']*ages[0]
            if np.all(self._durations(ages)>min_dur):
                if attempt>first_attempt:
                    self.logger("PenalizedLikelihood: found starting ages after %d attempts"%(attempt-first_attempt+1), 2)
                return ages
        raise EstimationError("PenalizedLikelihood: cannot find reasonable starting dates after %d tries: "
                              "maybe you need to adjust the calibration dates"%self.control['max_init_tries'])


####################################################################
## OBJECTIVE
####################################################################
    def _rate_penalty(self, s):
        grad = np.zeros_like(s)
        if self.model=='strict':
            return 0.0, grad
        if self.model=='relaxed':
            diff = s[self.child_edges] - s[self.parent_edges]
            pen = np.sum(diff**2)
            np.add.at(grad, self.child_edges, 2*diff)
            np.add.at(grad, self.parent_edges, -2*diff)
            dev = s[self.basal] - s[self.basal].mean()
            pen += np.sum(dev**2)
            grad[self.basal] += 2*dev
        else:
            # deviations relative to the mean rate, the overall rate scale is not penalized
            mean_rate = s.mean()
            r = s/mean_rate
            dev = r - 1.0
            pen = np.sum(dev**2)
            grad = 2.0/mean_rate*(dev - np.mean(r*dev))
        return pen, grad


    def _soft_penalty(self, a):
        grad = np.zeros_like(a)
        if len(self.soft_pos)==0:
            return 0.0, grad
        below = np.maximum(self.soft_lo - a[self.soft_pos], 0.0)
        above = np.maximum(a[self.soft_pos] - self.soft_hi, 0.0)
        w = self.control['soft_bound_weight']
        grad[self.soft_pos] = 2*w*(above - below)
        return w*np.sum(below**2 + above**2), grad


    def _neg_log_lh(self, a, s):
        d = np.maximum(self._durations(a), ctconf.SUPERTINY_NUMBER)
        s_e = np.maximum(s[self.rate_index], ctconf.SUPERTINY_NUMBER)
        mu = self.C*s_e*d
        nll = np.sum(mu - self.x*np.log(mu)) + self.lgamma_const

        grad_d = self.C*s_e - self.x/d
        grad_a = np.bincount(self.parent_pos, weights=grad_d, minlength=self.n_nodes)
        grad_a -= np.bincount(self.child_pos[self.internal_edge], weights=grad_d[self.internal_edge],
                              minlength=self.n_nodes)
        grad_s = np.bincount(self.rate_index, weights=self.C*d - self.x/s_e, minlength=self.n_rates)
        return nll, grad_a, grad_s


    def _objective(self, z):
        a, s = z[:self.n_nodes], z[self.n_nodes:]
        nll, grad_a, grad_s = self._neg_log_lh(a, s)
        pen, grad_pen = self._rate_penalty(s)
        soft, grad_soft = self._soft_penalty(a)
        val = nll + self.smoothing*pen + soft
        return val, np.concatenate([grad_a + grad_soft, grad_s + self.smoothing*grad_pen])


####################################################################
## ESTIMATION
####################################################################
    def estimate(self, tree, calibrations):
        """
        Estimate divergence times of `tree` subject to `calibrations`.

        Parameters
        ----------
         tree : RootedTree
            rooted phylogram, not modified

         calibrations : CalibrationTable
            calibration table resolved against `tree`

        Returns
        -------
         timetree : Bio.Phylo.BaseTree.Tree
            copy of the tree with branch lengths in time units. Clades carry
            `age` and `rate`, the tree carries the EstimationResult as `estimation`.
        """
        if not isinstance(tree, RootedTree):
            raise TypeError("PenalizedLikelihood.estimate requires a RootedTree")
        self.logger("PenalizedLikelihood: estimating divergence times with a %s clock, lambda=%g"
                    %(self.model, self.smoothing), 1)
        self._setup(tree, calibrations)

        if len(self.calibrated)==0:
            self.logger("PenalizedLikelihood: no calibrations given, the root age is set to 1",
                        1, warn=True)

        ages = self._find_start()
        self.T0 = ages[0]
        self.C = self.x.sum()/self._durations(ages/self.T0).sum()

        bounds, soft = self._bounds()
        self.soft_pos = np.array([p for p,_,_ in soft], dtype=int)
        self.soft_lo = np.array([lo for _,lo,_ in soft], dtype=float)
        self.soft_hi = np.array([hi for _,_,hi in soft], dtype=float)

        # age(parent) - age(child) >= min_duration for every branch
        A = np.zeros((self.n_edges, self.n_nodes + self.n_rates))
        A[np.arange(self.n_edges), self.parent_pos] = 1.0
        A[np.arange(self.n_edges)[self.internal_edge], self.child_pos[self.internal_edge]] = -1.0
        b = self.control['min_duration']*np.ones(self.n_edges)
        constraints = [{'type':'ineq', 'fun':lambda z: A.dot(z) - b, 'jac':lambda z: A}]

        # numerical breakdowns of SLSQP are retried from new starting ages, other failures are final
        for restart in range(self.control['max_restarts']+1):
            if restart:
                self.logger("PenalizedLikelihood: optimizer stopped with '%s', restart %d of %d from new starting ages"
                            %(res.message, restart, self.control['max_restarts']), 1, warn=True)
                ages = self._find_start(first_attempt=restart)
            res = minimize(self._objective, self._start_point(ages), jac=True, method='SLSQP', bounds=bounds,
                           constraints=constraints,
                           options={'ftol':self.control['tol'], 'maxiter':self.control['iter_max']})
            if res.success or res.status not in SLSQP_BREAKDOWN:
                break
        if not res.success:
            raise EstimationError("PenalizedLikelihood: optimization did not converge: %s (status %d)"
                                  %(res.message, res.status))
        self.logger("PenalizedLikelihood: optimization converged after %d iterations"%res.nit, 2)

        return self._make_timetree(tree, res)


    def _start_point(self, ages):
        """scaled starting ages followed by starting relative rates"""
        a0 = ages/self.T0
        if self.model=='strict':
            s0 = np.ones(1)
        else:
            # relative rates of branches without substitutions start at a small positive value
            s0 = np.maximum(self.x/(self.C*self._durations(a0)), 1e-3)
        return np.concatenate([a0, s0])


    def _bounds(self):
        """
        box bounds of the scaled ages and relative rates. Soft calibrations
        are returned separately and enter the objective as penalty.
        """
        lower = self.control['min_duration']
        bounds, soft = [], []
        self.n_fixed = 0
        for pos in range(self.n_nodes):
            r = self.calibrated.get(pos)
            if r is not None and not r.soft_bound:
                lo, hi = r.age_min/self.T0, r.age_max/self.T0
                if hi-lo<lower:
                    self.n_fixed += 1
                    # fixed ages are relaxed by a tiny margin and clipped afterwards
                    hi = lo + lower
                bounds.append((max(lo, lower), hi))
                continue
            if r is not None:
                soft.append((pos, r.age_min/self.T0, r.age_max/self.T0))
            if pos==0 and not any(not x.soft_bound for x in self.calibrated.values()):
                if len(self.calibrated)==0:
                    self.n_fixed += 1
                    bounds.append((1.0, 1.0+lower))
                else:
                    self.logger("PenalizedLikelihood: the root age is not constrained by a hard bound, "
                                "it is restricted to %d times the initial root age"%ctconf.MAX_ROOT_FACTOR,
                                1, warn=True)
                    bounds.append((lower, ctconf.MAX_ROOT_FACTOR))
            else:
                bounds.append((lower, None))
        bounds.extend([(self.control['min_rate'], None)]*self.n_rates)
        return bounds, soft


    def _make_timetree(self, tree, res):
        a, s = res.x[:self.n_nodes], res.x[self.n_nodes:]
        ages = a*self.T0
        tol = self.control['bound_tol']

        for pos, r in self.calibrated.items():
            if r.soft_bound:
                if not r.contains(ages[pos], rtol=tol):
                    self.logger("PenalizedLikelihood: soft calibration %d violated, age %1.3f not in [%g, %g]"
                                %(r.position, ages[pos], r.age_min, r.age_max), 1, warn=True)
                continue
            if not r.contains(ages[pos], rtol=tol):
                raise EstimationError("PenalizedLikelihood: estimated age %1.6f of node %d violates "
                                      "calibration %d [%g, %g]"%(ages[pos], r.node, r.position, r.age_min, r.age_max))
            ages[pos] = min(max(ages[pos], r.age_min), r.age_max)

        durations = self._durations(ages)
        if np.any(durations < -tol*ages[0]):
            raise EstimationError("PenalizedLikelihood: estimated time tree has negative branch lengths")
        durations = np.maximum(durations, 0.0)

        nll, _, _ = self._neg_log_lh(a, s)
        pen, _ = self._rate_penalty(s)
        rates = s[self.rate_index]*self.C/self.T0/(self.seq_len or 1.0)
        n_free = self.n_nodes - self.n_fixed + self.n_rates
        result = EstimationResult(log_likelihood=-nll, penalty=pen, smoothing=self.smoothing,
                                  model=self.model, n_params=n_free, n_iterations=res.nit,
                                  message=str(res.message))

        timetree = deepcopy(tree.tree)
        clades = list(timetree.find_clades(order='preorder'))
        originals = list(tree.tree.find_clades(order='preorder'))
        node_age = {n:ages[ni] for ni, n in enumerate(self.internal)}
        edge_pos = {c:ei for ei, c in enumerate(self.edges)}
        for new, old in zip(clades, originals):
            new.age = node_age.get(old, 0.0)
            if old is tree.tree.root:
                new.branch_length = None
                new.rate = None
            else:
                ei = edge_pos[old]
                new.branch_length = durations[ei]
                new.rate = rates[ei]
            new.dist2root = ages[0] - new.age
        timetree.rooted = True
        timetree.estimation = result
        self.logger(str(result), 2)
        return timetree
