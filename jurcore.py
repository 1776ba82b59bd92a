# Copyright (C) Inco - All Rights Reserved.
#
# Unauthorized copying of this file, via any medium, is strictly prohibited. Proprietary and confidential.
#
# [ENGINE]
#
# Every legal calculator of this module (monetary correction, late payment interest, sentence settlement and FGTS)
# runs on the same engine. It works in four well-defined phases:
#
#   1. Sequences the months of the calculation range.
#
#   2. Accumulates the correction factor, month by month, from the rates supplied by an index provider.
#
#   3. Applies interest, simple or compound, over the same months.
#
#   4. Records one ledger entry per month, and assembles the result from the ledger.
#
# Calculators are thin wrappers supplying a correction index, an interest rate and an interest mode. See the "Regime"
# class.
#
# Balance accrual, "accrue_balance", has its own loop. An FGTS balance corrects the interest already capitalised, and
# receives deposits along the way. The engine only ever corrects the principal.
#
# [ROUNDING]
#
# Jurcore never rounds internally. Every intermediate value keeps the full precision of the default decimal context.
# Rounding to cents happens only on output, in the "to_dict" methods of the result classes. Hence output values of a
# calculation should not be fed back as input of another calculation. Use the unrounded attributes instead.
#
# [PERIODS]
#
# The engine steps in calendar months. Days of the month are ignored, like in "_delta_months" below. The correction
# calculator, "compute", iterates from the month of the start date through the month of the end date, inclusive. The
# settlement composer, "settle", counts elapsed months: from the due month up to, but excluding, the month of the
# calculation date. An installment due in the calculation month accrues nothing.
#
# [WEAKNESSES]
#
#   • There is no pro rata die interest. A month is the smallest unit of accrual.
#
#   • Deflation is applied as published, i.e., negative indexes reduce the accumulated factor, and the corrected value
#     may end below the nominal value. Courts usually preserve the nominal value. This could be parameterizable.
#

'''
Legal calculation core, Jurcore.

Monetary correction and interest engine for legal calculations: monetary correction ("correção monetária"), late
payment interest ("juros moratórios"), sentence settlement ("liquidação de sentença"), and FGTS balance accrual.

Given a principal, a date range, a correction index, and an interest rate, the engine produces a month-stepped ledger,
the calculation memory ("memória de cálculo"), and a result assembled from it. Index values are supplied by an index
provider. The in-memory provider of this module carries a few years of indexes, for tests and examples.
'''

# Python.
import types
import typing as t
import decimal
import logging
import datetime
import functools
import itertools
import dataclasses
import importlib.metadata

# Libs.
import typeguard
import dateutil.relativedelta

# Jurcore version (http://versioningit.readthedocs.io/en/stable/runtime-version.html).
__version__ = importlib.metadata.version('jurcore') if 'jurcore' in importlib.metadata.packages_distributions() else 'DEV'

# Logger object.
_LOG = logging.getLogger('jurcore')

# Zero as decimal.
_0 = decimal.Decimal()

# One as decimal.
_1 = decimal.Decimal(1)

# One hundred as decimal.
_100 = decimal.Decimal(100)

# Centi factor.
_CENTI = decimal.Decimal('0.01')

# Centesimal quantization.
_Q = functools.partial(decimal.Decimal.quantize, exp=_CENTI, rounding=decimal.ROUND_HALF_UP)

# Quantization of factors and rates, eight decimal places.
_Q8 = functools.partial(decimal.Decimal.quantize, exp=decimal.Decimal('0.00000001'), rounding=decimal.ROUND_HALF_UP)

# A month.
_MONTH = dateutil.relativedelta.relativedelta(months=1)

# Usury ceiling, in percent per year (Decree 22.626/33).
_USURY_CEILING = decimal.Decimal(12)

# Correction indexes.
_INDEX = t.Literal['INPC', 'IPCA', 'IPCA-E', 'IGPM', 'INCC', 'TR', 'SELIC', 'CDI']

# Indexes that already include both monetary correction and interest.
_INTEREST_INCLUSIVE = ('SELIC',)

# Interest modes.
_INTEREST_MODE = t.Literal['simple', 'compound']

# Periodicity of a fixed rate.
_RATE_PERIOD = t.Literal['monthly', 'annual']

# Savings interest, in percent per month (Law 8.177/91, art. 12).
_SAVINGS_INTEREST = decimal.Decimal('0.5')

# Bases for late payment interest.
_LATE_BASIS = t.Literal['legal', 'selic', 'contractual']

# Helpers. {{{
@typeguard.typechecked
def _delta_months(d1: datetime.date, d2: datetime.date) -> int:
    '''
    Returns the number of months between two given dates, D1 and D2.

    The day of the month is completely ignored in the calculation.

    >>> from datetime import date
    >>>
    >>> _delta_months(date(2018, 5, 5), date(2018, 5, 15))
    0
    >>> _delta_months(date(2019, 11, 1), date(2019, 10, 10))
    1
    >>> _delta_months(date(2023, 5, 3), date(2022, 5, 4))
    12

    Deltas will be negative if D2 > D1.

    >>> _delta_months(date(2018, 5, 5), date(2018, 11, 5))
    -6
    '''

    return (d1.year - d2.year) * 12 + d1.month - d2.month

def _resolve(resolver: t.Callable[..., t.Any], period: 'Period') -> decimal.Decimal:
    '''Resolves the rate of a period. A missing rate is neutral, a failing resolver is not.'''

    try:
        rate = resolver(period)

    except RateResolutionError:
        raise

    except Exception as exc:
        raise RateResolutionError(f'the rate for period {period} could not be resolved') from exc

    if rate is None:
        _LOG.warning(f'no rate found for period {period}, a neutral rate will be used')

        return _0

    elif isinstance(rate, int) and not isinstance(rate, bool):
        rate = decimal.Decimal(rate)

    elif not isinstance(rate, decimal.Decimal):
        raise RateResolutionError(f'the rate for period {period} is a {type(rate).__name__}, not a decimal')

    _LOG.debug(f'{period}: {rate}')

    return rate

def _check_conflict(index: t.Optional['IndexRate'], interest: t.Optional['RateSpec']) -> None:
    if index and index.includes_interest and interest:
        raise ConflictingRateError(f'{index.code} already includes interest, and cannot be combined with another interest rate')

    elif index and isinstance(interest, IndexRate) and interest.includes_interest:
        raise ConflictingRateError(f'{interest.code} already includes monetary correction, and cannot be combined with {index.code} correction')

def _neutral(_: 'Period') -> t.Optional[decimal.Decimal]:
    return _0
# }}}

# Public API. Errors. {{{
class JurcoreError(Exception):
    pass

class InvalidRangeError(JurcoreError, ValueError):
    '''The end of a date range precedes its start.'''

class RateResolutionError(JurcoreError):
    '''An index provider, or a rate resolver, failed.'''

class ConflictingRateError(JurcoreError, ValueError):
    '''An index that already includes interest was combined with another interest layer.'''

class FutureDueDateError(JurcoreError, ValueError):
    '''A settlement item is due after the calculation date.'''

class MisalignedSequenceError(JurcoreError, RuntimeError):
    '''Correction and interest sequences do not share the same periods. Always a defect.'''

class BackendError(JurcoreError):
    pass
# }}}

# Public API. Periods and rates. {{{
@dataclasses.dataclass(frozen=True, order=True)
class Period:
    '''
    A calendar month.

    Periods are ordered by year, then month.

    >>> Period(2024, 1) < Period(2024, 2) < Period(2025, 1)
    True
    >>> str(Period(2024, 3) + 10)
    '01/2025'
    '''

    year: int

    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f'invalid month, {self.month}')

    @classmethod
    def from_date(cls, value: datetime.date) -> 'Period':
        return cls(value.year, value.month)

    @property
    def first_day(self) -> datetime.date:
        return datetime.date(self.year, self.month, 1)

    @property
    def label(self) -> str:
        return f'{self.month:02d}/{self.year:04d}'

    def __add__(self, months: int) -> 'Period':
        return Period.from_date(self.first_day + _MONTH * months)

    def __str__(self) -> str:
        return self.label

@typeguard.typechecked
def sequence_periods(start: datetime.date, end: datetime.date) -> t.List[Period]:
    '''
    Returns the months from the month of the start date through the month of the end date, inclusive.

    >>> from datetime import date
    >>>
    >>> [str(x) for x in sequence_periods(date(2023, 11, 20), date(2024, 2, 1))]
    ['11/2023', '12/2023', '01/2024', '02/2024']
    >>> len(sequence_periods(date(2024, 5, 1), date(2024, 5, 31)))
    1
    '''

    if end < start:
        raise InvalidRangeError(f'end date {end} precedes start date {start}')

    first = Period.from_date(start)

    return [first + i for i in range(_delta_months(end, start) + 1)]

@typeguard.typechecked
def elapsed_periods(start: datetime.date, end: datetime.date) -> t.List[Period]:
    '''
    Returns the months elapsed between two dates: from the month of the start date up to, but excluding, the month of
    the end date.

    >>> from datetime import date
    >>>
    >>> len(elapsed_periods(date(2023, 12, 15), date(2024, 12, 15)))
    12
    >>> elapsed_periods(date(2024, 12, 1), date(2024, 12, 31))
    []
    '''

    if end < start:
        raise InvalidRangeError(f'end date {end} precedes start date {start}')

    first = Period.from_date(start)

    return [first + i for i in range(_delta_months(end, start))]

def _period_range(begin: Period, end: Period) -> t.List[Period]:
    return sequence_periods(begin.first_day, end.first_day)

@functools.cache
@typeguard.typechecked
def convert_annual_to_monthly(rate: decimal.Decimal) -> decimal.Decimal:
    '''
    Converts an annual percentage rate to the equivalent monthly rate, "(1 + monthly) ** 12 = (1 + annual)".

    >>> round(convert_annual_to_monthly(decimal.Decimal('12')), 6)
    Decimal('0.948879')
    '''

    return ((_1 + rate / _100) ** (_1 / 12) - _1) * _100

@functools.cache
@typeguard.typechecked
def convert_monthly_to_annual(rate: decimal.Decimal) -> decimal.Decimal:
    '''
    Converts a monthly percentage rate to the equivalent annual rate.

    >>> round(convert_monthly_to_annual(decimal.Decimal('1')), 4)
    Decimal('12.6825')
    '''

    return ((_1 + rate / _100) ** 12 - _1) * _100

@dataclasses.dataclass(frozen=True)
class FixedRate:
    '''
    A literal interest rate, contractual or set by law, in percent.

      • "rate", is the percentage. One percent is "Decimal('1')".

      • "period", is either "monthly" or "annual".

    Annual rates are converted to monthly rates by the compound identity, "(1 + m) ** 12 = 1 + a". Simple interest is
    the only case where the annual rate is simply divided by twelve.
    '''

    rate: decimal.Decimal

    period: _RATE_PERIOD = 'monthly'

    def __post_init__(self) -> None:
        if self.rate < 0:
            raise ValueError('"rate" must not be negative')

        elif self.period not in t.get_args(_RATE_PERIOD):
            raise ValueError(f'unsupported rate period, "{self.period}"')

    @typeguard.typechecked
    def monthly(self, mode: _INTEREST_MODE) -> decimal.Decimal:
        '''Returns the monthly rate as a fraction.'''

        if self.period == 'monthly':
            return self.rate / _100

        elif mode == 'simple':
            return self.rate / _100 / 12

        else:
            return convert_annual_to_monthly(self.rate) / _100

@dataclasses.dataclass(frozen=True)
class IndexRate:
    '''
    A reference to a published index, resolved month by month by an index provider.

    The "percentage" field scales the index, e.g., 50 applies half of the published value.
    '''

    code: _INDEX

    percentage: int = 100

    def __post_init__(self) -> None:
        if self.code not in t.get_args(_INDEX):
            raise ValueError(f'unsupported index, "{self.code}"')

        elif self.percentage <= 0:
            raise ValueError('"percentage" must be positive')

    @property
    def includes_interest(self) -> bool:
        return self.code in _INTEREST_INCLUSIVE

# Either a literal rate, or an index reference.
RateSpec = t.Union[FixedRate, IndexRate]
# }}}

# Public API. Index providers. {{{
@dataclasses.dataclass
class MonthlyIndex:
    period: Period

    value: decimal.Decimal = _0  # Percent, as published.

class IndexProvider:
    '''
    The source of index values.

    Subclasses implement "get_monthly_indexes". Every other method derives from it. Rates are stored as published, in
    percent, and resolved as fractions.
    '''

    def get_monthly_indexes(self, code: str, begin: Period, end: Period) -> t.Generator[MonthlyIndex, None, None]:
        '''
        Returns the indexes of a given code between the begin and end periods.

        Both periods are inclusive. Months without a published index are simply not produced.
        '''

        raise NotImplementedError()

    @typeguard.typechecked
    def resolve_rate(self, code: str, period: Period, percentage: int = 100) -> t.Optional[decimal.Decimal]:
        '''Returns the rate of an index for a single month, as a fraction, or None if it wasn't published.'''

        for x in self.get_monthly_indexes(code, period, period):
            if x.period == period:
                return decimal.Decimal(percentage) * x.value / _100 / _100

        return None

    @typeguard.typechecked
    def resolve_rates(self, code: str, begin: Period, end: Period, percentage: int = 100) -> t.List[t.Optional[decimal.Decimal]]:
        '''
        Returns the rates of an index for a range of months, as fractions.

        The output is aligned one-to-one with the months from "begin" through "end". Missing months are None.
        '''

        if end < begin:
            raise InvalidRangeError(f'end period {end} precedes begin period {begin}')

        pct = decimal.Decimal(percentage)
        got = {x.period: pct * x.value / _100 / _100 for x in self.get_monthly_indexes(code, begin, end)}

        return [got.get(x) for x in _period_range(begin, end)]

    @typeguard.typechecked
    def calculate_factor(self, code: str, begin: Period, end: Period, percentage: int = 100) -> types.SimpleNamespace:
        '''
        Calculates the accumulated factor of an index between two months, inclusive.

        Returns the factor, "value", the amount of indexes found, "amount", and the indexes themselves, "mem".

        >>> from decimal import Decimal
        >>>
        >>> provider = InMemoryProvider()
        >>> factor = provider.calculate_factor('IPCA', Period(2022, 1), Period(2022, 3))
        >>> factor.amount
        3
        >>> factor.value == Decimal('1.0054') * Decimal('1.0101') * Decimal('1.0162')
        True
        '''

        pct = decimal.Decimal(percentage) / _100
        mem = list(self.get_monthly_indexes(code, begin, end))
        fac = _1

        for x in mem:
            fac = fac * (_1 + pct * x.value / _100)

        if not mem:
            _LOG.warning(f'no {code} indexes found between {begin} and {end}')

        return types.SimpleNamespace(value=fac, amount=len(mem), mem=mem)

    @typeguard.typechecked
    def prefetch(self, index: t.Optional[IndexRate], periods: t.Sequence[Period]) -> t.Callable[[Period], t.Optional[decimal.Decimal]]:
        '''
        Resolves all rates of an index for the given periods at once, and returns a resolver over them.

        Without an index, or periods, the resolver is neutral.
        '''

        if not index or not periods:
            return _neutral

        try:
            rates = dict(zip(_period_range(periods[0], periods[-1]), self.resolve_rates(index.code, periods[0], periods[-1], index.percentage)))

        except RateResolutionError:
            raise

        except Exception as exc:
            raise RateResolutionError(f'unable to resolve {index.code} rates between {periods[0]} and {periods[-1]}') from exc

        def resolver(period: Period) -> t.Optional[decimal.Decimal]:
            return rates.get(period)

        return resolver

def _yearly(year: int, values: str) -> t.List[t.Tuple[Period, decimal.Decimal]]:
    return [(Period(year, i), decimal.Decimal(x)) for i, x in enumerate(values.split(), 1)]

class InMemoryProvider(IndexProvider):
    '''
    This provider keeps a few years of monthly indexes in memory.

    IPCA ranges from 2018-01 to 2024-12. INPC, IGPM and SELIC (accumulated in the month) range from 2023-01 to
    2024-12. TR covers 2024 only.

    As this provider is static, i.e., it does not update itself as new indexes are published, it isn't suited for
    production purposes. Missing months are not projected. The engine takes them as neutral, and logs a warning.
    '''

    _registry: t.Dict[str, t.List[t.Tuple[Period, decimal.Decimal]]] = {
        'IPCA': [
            *_yearly(2018, '0.29 0.32 0.09 0.22 0.40 1.26 0.33 -0.09 0.48 0.45 -0.21 0.15'),
            *_yearly(2019, '0.32 0.43 0.75 0.57 0.13 0.01 0.19 0.11 -0.04 0.10 0.51 1.15'),
            *_yearly(2020, '0.21 0.25 0.07 -0.31 -0.38 0.26 0.36 0.24 0.64 0.86 0.89 1.35'),
            *_yearly(2021, '0.25 0.86 0.93 0.31 0.83 0.53 0.96 0.87 1.16 1.25 0.95 0.73'),
            *_yearly(2022, '0.54 1.01 1.62 1.06 0.47 0.67 -0.68 -0.36 -0.29 0.59 0.41 0.62'),
            *_yearly(2023, '0.53 0.84 0.71 0.61 0.23 -0.08 0.12 0.23 0.26 0.24 0.28 0.56'),
            *_yearly(2024, '0.42 0.83 0.16 0.38 0.46 0.21 0.38 -0.02 0.44 0.56 0.39 0.52'),
        ],
        'INPC': [
            *_yearly(2023, '0.46 0.77 0.64 0.53 0.36 -0.10 -0.09 0.20 0.11 0.12 0.10 0.55'),
            *_yearly(2024, '0.57 0.81 0.19 0.37 0.46 0.25 0.26 -0.14 0.48 0.61 0.33 0.48'),
        ],
        'IGPM': [
            *_yearly(2023, '0.21 -0.06 0.05 -0.95 -1.84 -1.93 -0.72 -0.14 0.37 0.50 0.59 0.74'),
            *_yearly(2024, '0.07 -0.52 -0.47 0.31 0.89 0.81 0.61 0.29 0.62 1.52 1.30 0.94'),
        ],
        'SELIC': [
            *_yearly(2023, '1.12 0.92 1.17 0.92 1.12 1.07 1.07 1.14 0.97 1.00 0.92 0.89'),
            *_yearly(2024, '0.97 0.80 0.83 0.89 0.83 0.79 0.91 0.87 0.84 0.93 0.79 0.93'),
        ],
        'TR': [
            *_yearly(2024, '0.0989 0.0707 0.0587 0.0759 0.0924 0.0767 0.0751 0.0694 0.0755 0.0892 0.0714 0.0803'),
        ],
    }

    @typeguard.typechecked
    def get_monthly_indexes(self, code: str, begin: Period, end: Period) -> t.Generator[MonthlyIndex, None, None]:
        if code not in self._registry:
            raise BackendError(f'this provider has no {code} indexes')

        for period, value in self._registry[code]:
            if begin <= period <= end:
                yield MonthlyIndex(period=period, value=value)

class StaticProvider(IndexProvider):
    '''
    A provider built from explicit monthly percentages.

      provider = StaticProvider({'IPCA': {Period(2024, 1): Decimal('0.42'), Period(2024, 2): Decimal('0.83')}})

    Useful for synthetic scenarios and for indexes loaded from historical tables.
    '''

    def __init__(self, tables: t.Mapping[str, t.Mapping[Period, decimal.Decimal]]) -> None:
        self._tables = {code: dict(sorted(values.items())) for code, values in tables.items()}

    @typeguard.typechecked
    def get_monthly_indexes(self, code: str, begin: Period, end: Period) -> t.Generator[MonthlyIndex, None, None]:
        if code not in self._tables:
            raise BackendError(f'this provider has no {code} indexes')

        for period, value in self._tables[code].items():
            if begin <= period <= end:
                yield MonthlyIndex(period=period, value=value)
# }}}

# Public API. Ledger and result classes. {{{
@dataclasses.dataclass(frozen=True)
class CorrectionStep:
    '''
    A step of the correction accumulator.

      • "rate", is the index rate applied in the period, as a fraction. Zero if the index was missing.

      • "factor", is the accumulated correction factor up to, and including, the period.

      • "value", is the principal times the accumulated factor.
    '''

    period: Period

    rate: decimal.Decimal

    factor: decimal.Decimal

    value: decimal.Decimal

@dataclasses.dataclass(frozen=True)
class InterestStep:
    '''
    A step of the interest applicator.

      • "rate", is the monthly interest rate of the period, as a fraction.

      • "value", is the interest accrued in the period.

      • "total", is the interest accrued up to, and including, the period.
    '''

    period: Period

    rate: decimal.Decimal

    value: decimal.Decimal

    total: decimal.Decimal

@dataclasses.dataclass(frozen=True)
class LedgerEntry:
    '''
    An entry of the calculation memory. One per month.

      • "period", is the month of the entry.

      • "rate", is the index rate applied in the month, as a fraction.

      • "cf", is the accumulated correction factor.

      • "corrected", is the corrected value at the end of the month.

      • "interest_rate", is the monthly interest rate applied in the month, as a fraction.

      • "gain", is the interest accrued in the month.

      • "bal", is the running balance: corrected value plus all interest accrued so far.
    '''

    period: Period

    rate: decimal.Decimal = _0

    cf: decimal.Decimal = _1

    corrected: decimal.Decimal = _0

    interest_rate: decimal.Decimal = _0

    gain: decimal.Decimal = _0

    bal: decimal.Decimal = _0

    @property
    def label(self) -> str:
        return self.period.label

    def to_dict(self) -> t.Dict[str, str]:
        return {
            'period': self.label,
            'rate_applied': f'{_Q8(self.rate):f}',
            'accumulated_factor': f'{_Q8(self.cf):f}',
            'corrected_value': str(_Q(self.corrected)),
            'interest_rate': f'{_Q8(self.interest_rate):f}',
            'interest': str(_Q(self.gain)),
            'balance': str(_Q(self.bal))
        }

@dataclasses.dataclass
class Result:
    '''
    The outcome of a correction and interest calculation.

    Values are not rounded. Use "to_dict" to get a serializable, rounded, version.
    '''

    principal: decimal.Decimal = _0

    corrected: decimal.Decimal = _0

    correction: decimal.Decimal = _0

    interest: decimal.Decimal = _0

    total: decimal.Decimal = _0

    cf: decimal.Decimal = _1

    correction_pct: decimal.Decimal = _0  # Correction, in percent of the principal.

    ledger: t.List[LedgerEntry] = dataclasses.field(default_factory=list)

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            'principal': str(_Q(self.principal)),
            'corrected_value': str(_Q(self.corrected)),
            'correction_amount': str(_Q(self.correction)),
            'interest_amount': str(_Q(self.interest)),
            'total_amount': str(_Q(self.total)),
            'accumulated_factor': f'{_Q8(self.cf):f}',
            'correction_pct': f'{_Q8(self.correction_pct):f}',
            'ledger': [x.to_dict() for x in self.ledger]
        }
# }}}

# Public API. Engine. {{{
@typeguard.typechecked
def accumulate_correction(
    principal: decimal.Decimal,
    periods: t.Sequence[Period],
    resolver: t.Callable[[Period], t.Optional[decimal.Decimal]]
) -> t.List[CorrectionStep]:
    '''
    Compounds the monthly index rates into an accumulated correction factor.

    For each period, in order, "factor = factor × (1 + rate)", and the corrected value is "principal × factor". A
    missing rate (None) is neutral. A failing resolver is not: its error is raised as a RateResolutionError.

    >>> from decimal import Decimal
    >>>
    >>> steps = accumulate_correction(Decimal('100'), [Period(2024, 1), Period(2024, 2)], lambda _: Decimal('0.1'))
    >>> [(str(x.period), x.factor, x.value) for x in steps]
    [('01/2024', Decimal('1.1'), Decimal('110.0')), ('02/2024', Decimal('1.21'), Decimal('121.00'))]
    '''

    rates = [_resolve(resolver, x) for x in periods]
    facs = itertools.accumulate(rates, lambda fac, rate: fac * (_1 + rate), initial=_1)

    next(facs)  # Skip the initial factor.

    return [CorrectionStep(period=p, rate=r, factor=f, value=principal * f) for p, r, f in zip(periods, rates, facs)]

@typeguard.typechecked
def apply_interest(
    base: decimal.Decimal,
    mode: _INTEREST_MODE,
    rate: RateSpec,
    periods: t.Sequence[Period], *,
    corrections: t.Optional[t.Sequence[CorrectionStep]] = None,
    correction_index: t.Optional[IndexRate] = None,
    start: t.Optional[Period] = None,
    resolver: t.Optional[t.Callable[[Period], t.Optional[decimal.Decimal]]] = None
) -> t.List[InterestStep]:
    '''
    Applies interest over a sequence of periods.

      • "base", is the principal.

      • "mode", is either "simple" or "compound". It applies to all periods alike.

      • "rate", is a FixedRate, or an IndexRate. The latter requires a "resolver".

    The remaining parameters are associative.

      • "corrections", are the steps of the correction accumulator for the same periods. When provided, compound
        interest accrues on the corrected value.

      • "correction_index", is the correction index in use, if any. An index that already includes interest, like
        SELIC, cannot be combined with interest. A ConflictingRateError is raised.

      • "start", is the first period with interest. Prior periods accrue nothing.

    Simple interest is "base × rate" every period. The base never grows: neither correction nor prior interest is
    incorporated. Compound interest is "(corrected value + interest so far) × rate", or "(base + interest so far) ×
    rate" without corrections.

    >>> from decimal import Decimal
    >>>
    >>> periods = [Period(2024, 1), Period(2024, 2)]
    >>> [x.value for x in apply_interest(Decimal('100'), 'simple', FixedRate(Decimal('10')), periods)]
    [Decimal('10.0'), Decimal('10.0')]
    >>> [x.value for x in apply_interest(Decimal('100'), 'compound', FixedRate(Decimal('10')), periods)]
    [Decimal('10.0'), Decimal('11.00')]
    '''

    _check_conflict(correction_index, rate)

    if corrections is not None and [x.period for x in corrections] != list(periods):
        raise MisalignedSequenceError('correction steps and interest periods do not match')

    if isinstance(rate, IndexRate) and resolver is None:
        raise ValueError(f'interest indexed to {rate.code} requires a resolver')

    total = _0
    out = []

    for i, period in enumerate(periods):
        if start and period < start:
            out.append(InterestStep(period=period, rate=_0, value=_0, total=total))

            continue

        monthly = rate.monthly(mode) if isinstance(rate, FixedRate) else _resolve(t.cast(t.Callable[..., t.Any], resolver), period)

        if mode == 'simple':
            gain = base * monthly

        else:
            gain = ((corrections[i].value if corrections else base) + total) * monthly

        total = total + gain

        out.append(InterestStep(period=period, rate=monthly, value=gain, total=total))

    return out

@typeguard.typechecked
def record_ledger(corrections: t.Sequence[CorrectionStep], interests: t.Sequence[InterestStep]) -> t.List[LedgerEntry]:
    '''
    Zips correction and interest steps into ledger entries, one per period.

    Both sequences must share the same periods, in the same order. Otherwise a MisalignedSequenceError is raised.
    '''

    if [x.period for x in corrections] != [x.period for x in interests]:
        raise MisalignedSequenceError('correction and interest steps do not share the same periods')

    out = []

    for c, i in zip(corrections, interests):
        out.append(LedgerEntry(period=c.period, rate=c.rate, cf=c.factor, corrected=c.value, interest_rate=i.rate, gain=i.value, bal=c.value + i.total))

        _LOG.debug(out[-1])

    return out

@typeguard.typechecked
def assemble_result(principal: decimal.Decimal, ledger: t.Sequence[LedgerEntry]) -> Result:
    '''Folds a ledger into a result. An empty ledger leaves the principal untouched.'''

    if ledger:
        corrected = ledger[-1].corrected
        cf = ledger[-1].cf

    else:
        corrected = principal
        cf = _1

    interest = sum((x.gain for x in ledger), _0)

    return Result(
        principal=principal,
        corrected=corrected,
        correction=corrected - principal,
        interest=interest,
        total=corrected + interest,
        cf=cf,
        correction_pct=(cf - _1) * _100,
        ledger=list(ledger)
    )

def _run(
    principal: decimal.Decimal,
    periods: t.Sequence[Period],
    index: t.Optional[IndexRate],
    interest: t.Optional[RateSpec],
    mode: _INTEREST_MODE,
    interest_start: t.Optional[datetime.date],
    provider: IndexProvider
) -> Result:
    corrections = accumulate_correction(principal, periods, provider.prefetch(index, periods))

    if interest:
        kwa: t.Dict[str, t.Any] = {}

        kwa['corrections'] = corrections
        kwa['correction_index'] = index
        kwa['start'] = Period.from_date(interest_start) if interest_start else None
        kwa['resolver'] = provider.prefetch(interest, periods) if isinstance(interest, IndexRate) else None

        interests = apply_interest(principal, mode, interest, periods, **kwa)

    else:
        interests = apply_interest(principal, mode, FixedRate(_0), periods)

    return assemble_result(principal, record_ledger(corrections, interests))

@typeguard.typechecked
def compute(
    principal: decimal.Decimal,
    start: datetime.date,
    end: datetime.date, *,
    index: t.Optional[IndexRate] = None,
    interest: t.Optional[RateSpec] = None,
    mode: _INTEREST_MODE = 'simple',
    interest_start: t.Optional[datetime.date] = None,
    provider: IndexProvider = InMemoryProvider()
) -> Result:
    '''
    Corrects a principal from the month of the start date through the month of the end date, and applies interest.

    To understand how to invoke this function, consider the following sentence:

      "Correct the amount V, from date D0 to date D1, by the index I, plus interest at rate R."

    The three positional parameters are V, D0 and D1. The remaining parameters are associative.

      • "index", is the correction index, an IndexRate. If omitted, there is no correction.

      • "interest", is the interest rate, a FixedRate or an IndexRate. If omitted, there is no interest.

      • "mode", is the interest mode, "simple" or "compound".

      • "interest_start", is the date interest starts to accrue, if it differs from the start date.

      • "provider", is the index provider. Defaults to the in-memory provider.

    Rates for the whole range are resolved before the calculation starts.

    >>> from datetime import date
    >>> from decimal import Decimal
    >>>
    >>> res = compute(Decimal('10000'), date(2024, 1, 1), date(2024, 6, 30), interest=FixedRate(Decimal('1')))
    >>> res.interest, res.total
    (Decimal('600.00'), Decimal('10600.00'))
    '''

    if principal < 0:
        raise ValueError('"principal" must not be negative')

    _check_conflict(index, interest)

    return _run(principal, sequence_periods(start, end), index, interest, mode, interest_start, provider)
# }}}

# Public API. Settlement. {{{
@dataclasses.dataclass(frozen=True)
class CashFlowItem:
    '''
    An installment of a settlement.

      • "label", describes the installment.

      • "amount", is the nominal value.

      • "due_date", is the date the installment was due. Correction and interest run from it.

      • "corrects", when false, the installment is not corrected.

      • "accrues_interest", when false, the installment bears no interest.
    '''

    label: str

    amount: decimal.Decimal

    due_date: datetime.date

    corrects: bool = True

    accrues_interest: bool = True

@dataclasses.dataclass(frozen=True)
class Surcharge:
    '''
    A charge layered on the settled subtotal: attorney fees, court costs, fines.

    A surcharge is either a percentage of the running subtotal, "rate", or a flat "amount". Surcharges cascade: each one
    is computed on the subtotal after all prior surcharges.
    '''

    label: str

    rate: t.Optional[decimal.Decimal] = None

    amount: t.Optional[decimal.Decimal] = None

    def __post_init__(self) -> None:
        if (self.rate is None) == (self.amount is None):
            raise ValueError(f'surcharge "{self.label}" must have either a rate or an amount')

        elif (self.rate is not None and self.rate < 0) or (self.amount is not None and self.amount < 0):
            raise ValueError(f'surcharge "{self.label}" must not be negative')

    @classmethod
    def attorney_fees(cls, rate: decimal.Decimal) -> 'Surcharge':
        return cls('Honorários advocatícios', rate=rate)

    @classmethod
    def court_costs(cls, amount: decimal.Decimal) -> 'Surcharge':
        return cls('Custas processuais', amount=amount)

    @classmethod
    def enforcement_fine(cls, rate: decimal.Decimal = decimal.Decimal(10)) -> 'Surcharge':
        return cls('Multa (CPC art. 523, § 1º)', rate=rate)

    def charge(self, base: decimal.Decimal) -> decimal.Decimal:
        if self.rate is not None:
            return base * self.rate / _100

        return t.cast(decimal.Decimal, self.amount)

@dataclasses.dataclass
class SettledItem:
    item: CashFlowItem

    result: Result

@dataclasses.dataclass
class SettledSurcharge:
    surcharge: Surcharge

    base: decimal.Decimal

    value: decimal.Decimal

@dataclasses.dataclass
class AggregateEntry:
    '''The sum of the ledger entries of all settlement items for a month.'''

    period: Period

    corrected: decimal.Decimal = _0

    gain: decimal.Decimal = _0

    bal: decimal.Decimal = _0

    items: int = 0

@dataclasses.dataclass
class Settlement:
    '''
    The outcome of a settlement.

      • "items", the settled items, each with its own result and ledger.

      • "principal", "correction" and "interest", the sums over all items.

      • "subtotal", the sum of the item totals, before surcharges.

      • "surcharges", the surcharges, each with the base it was computed on.

      • "total", the subtotal plus all surcharges.
    '''

    calc_date: datetime.date

    items: t.List[SettledItem] = dataclasses.field(default_factory=list)

    principal: decimal.Decimal = _0

    correction: decimal.Decimal = _0

    interest: decimal.Decimal = _0

    subtotal: decimal.Decimal = _0

    surcharges: t.List[SettledSurcharge] = dataclasses.field(default_factory=list)

    total: decimal.Decimal = _0

    def aggregate_ledger(self) -> t.List[AggregateEntry]:
        '''
        Sums the item ledgers, field by field, month by month.

        Items due in the calculation month have no ledger. Their nominal value is folded into the last month, so the
        balance of the last entry always equals the subtotal.
        '''

        agg: t.Dict[Period, AggregateEntry] = {}
        idle = []

        for x in self.items:
            if not x.result.ledger:
                idle.append(x)

            for e in x.result.ledger:
                ent = agg.setdefault(e.period, AggregateEntry(period=e.period))

                ent.corrected += e.corrected
                ent.gain += e.gain
                ent.bal += e.bal
                ent.items += 1

        if idle:
            last = max(agg) if agg else Period.from_date(self.calc_date)
            ent = agg.setdefault(last, AggregateEntry(period=last))

            for x in idle:
                ent.corrected += x.result.corrected
                ent.bal += x.result.total
                ent.items += 1

        return [agg[x] for x in sorted(agg)]

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            'calculation_date': self.calc_date.isoformat(),
            'items': [{'label': x.item.label, 'due_date': x.item.due_date.isoformat(), **x.result.to_dict()} for x in self.items],
            'principal': str(_Q(self.principal)),
            'correction_amount': str(_Q(self.correction)),
            'interest_amount': str(_Q(self.interest)),
            'subtotal': str(_Q(self.subtotal)),
            'surcharges': [{'label': x.surcharge.label, 'base': str(_Q(x.base)), 'value': str(_Q(x.value))} for x in self.surcharges],
            'total_amount': str(_Q(self.total))
        }

@typeguard.typechecked
def settle(
    items: t.Sequence[CashFlowItem],
    calc_date: datetime.date, *,
    index: t.Optional[IndexRate] = None,
    interest: t.Optional[RateSpec] = None,
    mode: _INTEREST_MODE = 'simple',
    surcharges: t.Sequence[Surcharge] = (),
    interest_start: t.Optional[datetime.date] = None,
    provider: IndexProvider = InMemoryProvider()
) -> Settlement:
    '''
    Settles a set of installments on a calculation date.

    Each installment is corrected and bears interest independently, over the months elapsed from its due date to the
    calculation date. The item totals are summed into a subtotal, and the surcharges are applied in order, each on the
    running subtotal after the prior ones.

    Validation is all or nothing: an installment due after the calculation date fails the whole settlement with a
    FutureDueDateError.

    >>> from datetime import date
    >>> from decimal import Decimal
    >>>
    >>> items = [CashFlowItem('A', Decimal('1000'), date(2023, 12, 15)), CashFlowItem('B', Decimal('2000'), date(2024, 6, 15))]
    >>> settle(items, date(2024, 12, 15), interest=FixedRate(Decimal('1'))).subtotal
    Decimal('3240.00')
    '''

    # 1. Validate.
    if not items:
        raise ValueError('at least one installment is required')

    _check_conflict(index, interest)

    for i, x in enumerate(items):
        if x.amount < 0:
            raise ValueError(f'"items[{i}].amount" must not be negative')

        elif x.due_date > calc_date:
            raise FutureDueDateError(f'"items[{i}].due_date", {x.due_date}, succeeds the calculation date, {calc_date}')

    # 2. Run each installment.
    out = Settlement(calc_date=calc_date)

    for x in items:
        kwa: t.Dict[str, t.Any] = {}

        kwa['index'] = index if x.corrects else None
        kwa['interest'] = interest if x.accrues_interest else None
        kwa['mode'] = mode
        kwa['interest_start'] = interest_start
        kwa['provider'] = provider

        out.items.append(SettledItem(item=x, result=_run(x.amount, elapsed_periods(x.due_date, calc_date), **kwa)))

    out.principal = sum((x.result.principal for x in out.items), _0)
    out.correction = sum((x.result.correction for x in out.items), _0)
    out.interest = sum((x.result.interest for x in out.items), _0)
    out.subtotal = sum((x.result.total for x in out.items), _0)

    # 3. Cascade surcharges.
    run = out.subtotal

    for s in surcharges:
        val = s.charge(run)

        out.surcharges.append(SettledSurcharge(surcharge=s, base=run, value=val))

        run = run + val

    out.total = run

    return out
# }}}

# Public API. Calculators. {{{
@dataclasses.dataclass(frozen=True)
class Regime:
    '''
    A calculator configuration: correction index, interest rate and interest mode.

    Feed it to "compute" or "settle" through its "kwargs" property.

      res = jurcore.compute(principal, start, end, **jurcore.Regime.civil().kwargs)
    '''

    index: t.Optional[IndexRate] = None

    interest: t.Optional[RateSpec] = None

    mode: _INTEREST_MODE = 'simple'

    @property
    def kwargs(self) -> t.Dict[str, t.Any]:
        return {x.name: getattr(self, x.name) for x in dataclasses.fields(self)}

    @classmethod
    def civil(cls, index: _INDEX = 'INPC') -> 'Regime':
        '''Correction by the given index, and simple interest of 1% a month (CC art. 406).'''

        return cls(IndexRate(index), FixedRate(_1), 'simple')

    @classmethod
    def social_security(cls) -> 'Regime':
        '''Correction by INPC (Law 8.213/91, art. 41-A), and simple interest of 1% a month.'''

        return cls(IndexRate('INPC'), FixedRate(_1), 'simple')

    @classmethod
    def selic(cls) -> 'Regime':
        '''SELIC alone. It already includes correction and interest.'''

        return cls(IndexRate('SELIC'), None, 'simple')

    @classmethod
    def fgts(cls) -> 'Regime':
        '''TR, and 3% a year, capitalised monthly (Law 8.036/90, art. 13).'''

        return cls(IndexRate('TR'), FixedRate(decimal.Decimal(3), 'annual'), 'compound')

    @classmethod
    def labor(cls, judicial: bool = True) -> 'Regime':
        '''
        Labor claims (ADC 58 and 59, STF).

        In the judicial phase, SELIC alone. In the pre-judicial phase, IPCA-E and savings interest of 0.5% a month.
        '''

        if judicial:
            return cls.selic()

        return cls(IndexRate('IPCA-E'), FixedRate(_SAVINGS_INTEREST), 'simple')

    @classmethod
    def public_treasury(cls) -> 'Regime':
        '''Claims against the public treasury: IPCA-E, and savings interest of 0.5% a month (Law 9.494/97, art. 1º-F).'''

        return cls(IndexRate('IPCA-E'), FixedRate(_SAVINGS_INTEREST), 'simple')

    @classmethod
    def family(cls, index: _INDEX = 'INPC') -> 'Regime':
        '''
        Family claims, e.g., overdue alimony: correction from each due date, and 1% a month (CC art. 405).

        Interest runs from the summons. Pass its date as "interest_start".
        '''

        return cls(IndexRate(index), FixedRate(_1), 'simple')

@typeguard.typechecked
def calculate_selic_correction(principal: decimal.Decimal, start: datetime.date, end: datetime.date, provider: IndexProvider = InMemoryProvider()) -> Result:
    '''Corrects a principal by SELIC. No interest is added, SELIC already includes it.'''

    return compute(principal, start, end, provider=provider, **Regime.selic().kwargs)

@typeguard.typechecked
def calculate_late_interest(
    principal: decimal.Decimal,
    due_date: datetime.date,
    calc_date: datetime.date, *,
    basis: _LATE_BASIS = 'legal',
    mode: _INTEREST_MODE = 'simple',
    contractual_rate: t.Optional[decimal.Decimal] = None,
    correction_index: t.Optional[IndexRate] = None,
    provider: IndexProvider = InMemoryProvider()
) -> Result:
    '''
    Calculates late payment interest ("juros moratórios") on an overdue amount.

      • "basis", is the interest basis.

        – "legal", 1% a month (CC art. 406, c/c CTN art. 161, § 1º).

        – "selic", the monthly SELIC rate, read from the provider. Can't be combined with a correction index.

        – "contractual", the monthly percentage given in "contractual_rate". A warning is logged if it exceeds the
          usury ceiling of 12% a year.

      • "correction_index", optional, corrects the amount before interest.

    Interest accrues over the months elapsed since the due date.
    '''

    rate: RateSpec

    if basis == 'legal':
        rate = FixedRate(_1)

    elif basis == 'selic':
        rate = IndexRate('SELIC')

    elif contractual_rate is None:
        raise ValueError('the contractual basis requires a "contractual_rate"')

    else:
        rate = FixedRate(contractual_rate)

        if contractual_rate * 12 > _USURY_CEILING:
            _LOG.warning(f'contractual rate of {contractual_rate}% a month exceeds the usury ceiling of {_USURY_CEILING}% a year')

    if principal < 0:
        raise ValueError('"principal" must not be negative')

    _check_conflict(correction_index, rate)

    return _run(principal, elapsed_periods(due_date, calc_date), correction_index, rate, mode, None, provider)
# }}}

# Public API. Balance accrual. {{{
@dataclasses.dataclass(frozen=True)
class BalanceEntry:
    '''
    An entry of a balance accrual table.

      • "opening", the balance at the start of the month.

      • "rate", the index rate of the month, as a fraction.

      • "correction", the correction of the opening balance.

      • "interest_rate", the monthly interest rate, as a fraction.

      • "gain", the interest on the corrected balance.

      • "deposit", the deposit made at the end of the month.

      • "closing", the balance at the end of the month.
    '''

    period: Period

    opening: decimal.Decimal = _0

    rate: decimal.Decimal = _0

    correction: decimal.Decimal = _0

    interest_rate: decimal.Decimal = _0

    gain: decimal.Decimal = _0

    deposit: decimal.Decimal = _0

    closing: decimal.Decimal = _0

    def to_dict(self) -> t.Dict[str, str]:
        return {
            'period': self.period.label,
            'opening_balance': str(_Q(self.opening)),
            'rate_applied': f'{_Q8(self.rate):f}',
            'correction': str(_Q(self.correction)),
            'interest_rate': f'{_Q8(self.interest_rate):f}',
            'interest': str(_Q(self.gain)),
            'deposit': str(_Q(self.deposit)),
            'closing_balance': str(_Q(self.closing))
        }

@dataclasses.dataclass
class BalanceResult:
    initial: decimal.Decimal = _0

    correction: decimal.Decimal = _0

    interest: decimal.Decimal = _0

    deposits: decimal.Decimal = _0

    final: decimal.Decimal = _0

    ledger: t.List[BalanceEntry] = dataclasses.field(default_factory=list)

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            'initial_balance': str(_Q(self.initial)),
            'correction_amount': str(_Q(self.correction)),
            'interest_amount': str(_Q(self.interest)),
            'deposits': str(_Q(self.deposits)),
            'final_balance': str(_Q(self.final)),
            'ledger': [x.to_dict() for x in self.ledger]
        }

@typeguard.typechecked
def accrue_balance(
    initial: decimal.Decimal,
    start: datetime.date,
    end: datetime.date, *,
    index: t.Optional[IndexRate] = IndexRate('TR'),
    interest: t.Optional[FixedRate] = FixedRate(decimal.Decimal(3), 'annual'),
    deposit: decimal.Decimal = _0,
    provider: IndexProvider = InMemoryProvider()
) -> BalanceResult:
    '''
    Accrues a balance with monthly deposits, like an FGTS account.

    Every month, from the month of the start date through the month of the end date:

      1. The opening balance is corrected by the index.

      2. Compound interest accrues on the corrected balance.

      3. The deposit is added.

    Deposits of a month start accruing in the following month.
    '''

    if initial < 0:
        raise ValueError('"initial" must not be negative')

    elif deposit < 0:
        raise ValueError('"deposit" must not be negative')

    _check_conflict(index, interest)

    periods = sequence_periods(start, end)
    correct = provider.prefetch(index, periods)
    monthly = interest.monthly('compound') if interest else _0
    out = BalanceResult(initial=initial)
    bal = initial

    for period in periods:
        rate = _resolve(correct, period)
        cor = bal * rate
        gain = (bal + cor) * monthly
        ent = BalanceEntry(period=period, opening=bal, rate=rate, correction=cor, interest_rate=monthly, gain=gain, deposit=deposit, closing=bal + cor + gain + deposit)

        out.ledger.append(ent)

        out.correction += cor
        out.interest += gain
        out.deposits += deposit

        bal = ent.closing

    out.final = bal

    return out

@typeguard.typechecked
def calculate_fgts(
    initial: decimal.Decimal,
    start: datetime.date,
    end: datetime.date,
    monthly_deposit: decimal.Decimal = _0,
    provider: IndexProvider = InMemoryProvider()
) -> BalanceResult:
    '''Accrues an FGTS balance: TR correction, and 3% a year of interest, capitalised monthly.'''

    reg = Regime.fgts()

    return accrue_balance(initial, start, end, index=reg.index, interest=t.cast(FixedRate, reg.interest), deposit=monthly_deposit, provider=provider)
# }}}

# Public API. Installment plans. {{{
@dataclasses.dataclass(frozen=True)
class Installment:
    '''
    An installment of a payment plan.

      • "no", the installment's number.

      • "amort", the principal amortized.

      • "gain", the interest paid.

      • "raw", the installment value, amortization plus interest.

      • "bal", the outstanding balance after the installment.
    '''

    no: int

    amort: decimal.Decimal

    gain: decimal.Decimal

    raw: decimal.Decimal

    bal: decimal.Decimal

@typeguard.typechecked
def build_installment_plan(total: decimal.Decimal, count: int, monthly_rate: decimal.Decimal = _0) -> t.Generator[Installment, None, None]:
    '''
    Splits a settled amount in installments.

    Without interest, the amount is evenly split. With a monthly rate, in percent, installments are constant (Price
    table). The last installment absorbs any residue, so the balance always ends at zero.

    >>> from decimal import Decimal
    >>>
    >>> [x.raw for x in build_installment_plan(Decimal('300'), 3)]
    [Decimal('100'), Decimal('100'), Decimal('100')]
    '''

    if count <= 0:
        raise ValueError('"count" must be a greater than, or equal to, one')

    elif monthly_rate < 0:
        raise ValueError('"monthly_rate" must not be negative')

    rate = monthly_rate / _100
    pmt = total * rate / (_1 - (_1 + rate) ** -count) if rate else total / count
    bal = total

    for no in range(1, count + 1):
        gain = bal * rate
        amort = pmt - gain if no < count else bal
        bal = bal - amort

        yield Installment(no=no, amort=amort, gain=gain, raw=amort + gain, bal=bal)
# }}}

# Log current version info.
_LOG.info(f'Jurcore version {__version__} initialized')

if __name__ == '__main__':
    import doctest

    doctest.testmod()

# vi:fdm=marker:
