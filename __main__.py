#!/usr/bin/env python3
#
# Copyright (C) Inco - All Rights Reserved.
#
# Unauthorized copying of this file, via any medium, is strictly prohibited. Proprietary and confidential.
#

'''Jurcore CLI.'''

# Python.
import re
import abc
import csv
import sys
import json
import locale
import typing
import decimal
import logging
import datetime
import textwrap
import zoneinfo
import functools
import fileinput
import html.parser
import unicodedata
import urllib.parse

# Libs.
import sh2py
import tabulate

if typing.TYPE_CHECKING:
    import platformdirs

# Jurcore.
import jurcore

# Print helper.
_PR = functools.partial(print, file=sys.stderr, flush=True)

# Options for the calculation memory table.
_LEDGER_OPTS = {
    'headers': ['Period', 'Index %', 'Acc. Factor', 'Corrected', 'Interest %', 'Interest', 'Balance'],
    'colalign': ('center', 'right', 'right', 'right', 'right', 'right', 'right')
}

# Options for the settlement items table.
_SETTLEMENT_OPTS = {
    'headers': ['Description', 'Due', 'Principal', 'Correction', 'Interest', 'Total'],
    'colalign': ('left', 'center', 'right', 'right', 'right', 'right')
}

# Options for the balance accrual table.
_BALANCE_OPTS = {
    'headers': ['Period', 'Opening', 'Index %', 'Correction', 'Interest', 'Deposit', 'Closing'],
    'colalign': ('center', 'right', 'right', 'right', 'right', 'right', 'right')
}

# Answers taken as "yes".
_YES = ['s', 'sim', 'y', 'yes']

# BACEN SGS series, by index code.
_SGS = {
    'INPC': 188,
    'IPCA': 433,
    'IPCA-E': 10764,
    'IGPM': 189,
    'INCC': 192,
    'TR': 7811,
    'SELIC': 4390,
    'CDI': 4391
}

# Slugy cleanup regular expression.
_RE_SLUGY1 = re.compile(r'[^\w\s_-]')

# Slugy regular expression for separator substitution.
_RE_SLUGY2 = re.compile(r'[\s_-]+')

# A logger for this module.
_LOG = logging.getLogger('jurcore_cli')

# GMT-3.
_BRT = zoneinfo.ZoneInfo('America/Sao_Paulo')

# Simpler split result.
_SSR = functools.partial(urllib.parse.SplitResult, 'https', query='', fragment='')

# BACEN API URL.
_BACEN_API = functools.partial(_SSR, 'api.bcb.gov.br')

# Today in Brazilian Regional Time (BRT).
_TODAY: typing.Callable[[], datetime.date] = lambda: datetime.datetime.now(_BRT).date()

def _slugy(value: str, connector: str = '') -> str:
    '''Create a "slugyfied" version of a string.'''

    value = unicodedata.normalize('NFKD', value)
    value = value.encode('ASCII', 'ignore').decode()
    value = _RE_SLUGY1.sub('', value).strip().lower()

    if connector:
        return _RE_SLUGY2.sub(connector, value)

    else:
        return value

# From http://stackoverflow.com/a/55825140 and http://stackoverflow.com/a/64051246.
class _HtmlFilter(html.parser.HTMLParser, abc.ABC):
    '''A simple no deps HTML -> TEXT converter.'''

    def __init__(self):
        super().__init__()

        self._in_head = self._in_style = False
        self.collected_text = []

    def handle_starttag(self, tag: str, _: list[tuple[str, str | None]]) -> None:
        if tag == 'head':
            self._in_head = True

        elif tag == 'style':
            self._in_style = True

    def handle_data(self, data: str) -> None:
        if self._in_head or self._in_style:
            return

        elif text := data.strip():
            self.collected_text.append(' '.join(text.split()))

    def handle_endtag(self, tag):
        if tag == 'head':
            self._in_head = False

        elif tag == 'style':
            self._in_style = False

class LocalDirectoryProvider(jurcore.IndexProvider):
    '''
    An index provider backed by the BACEN SGS API, using the "platformdirs" Python package for persistence.

    Caching means that on a given day, a single HTTP request per index will be sent to BACEN. The first response will
    be stored on disk, and used on subsequent calls. Indexes published later in the same day will not be considered.

        provider = LocalDirectoryProvider('jurcore')
    '''

    def __init__(self, app_name: str, author_name: str = 'Inco') -> None:
        import platformdirs

        self._platform = platformdirs.PlatformDirs(app_name, author_name)

    # BACEN responds with HTML in some cases of internal failure. Without a JSON content type, the response text is
    # stripped of its tags, and reported in the exception.
    @staticmethod
    def _retrieve_bacen_response(url: str, query_string: typing.Dict[str, str], platform: 'platformdirs.api.PlatformDirsABC', index_name: str) -> typing.Any:
        '''
        Retrieves the data from a BACEN API response for a given index.

        The index comes from the "url" parameter, e.g., "/dados/serie/bcdata.sgs.188/dados" for INPC. The
        "query_string" parameter configures the response format and the start and end dates of the period to query.

          {'formato': 'json', 'dataInicial': '01/01/2000', 'dataFinal': '12/12/2024'}

        The response is saved in JSON format to the user cache directory. The file name changes daily, so a response
        from a previous day is never reused.

          1. Search for today's data on disk.

            1.1. If the data is found, return it.

            1.2. If there is no data on disk, make a request to the BACEN API.

              1.2.1. If the response is valid, save it to disk and return it.

              1.2.2. If the response is not valid, raise an exception.
        '''

        import requests

        name = f'{platform.user_cache_dir}/bacen_{_slugy(index_name)}_{_TODAY().strftime("%Y%m%d")}.json'

        try:
            _LOG.info(f'Searching for a cache file named “{name}”…')

            with open(name, 'r') as f:
                docs = json.loads(f.read())

                _LOG.info(f'Cache file “{name}” was found.')

            return docs

        except FileNotFoundError:
            _LOG.info(f'Cache file “{name}” was not found! Will query the BACEN API and dump the response to it…')

            rep = requests.get(url, params=query_string)

            if rep.ok and 'content-type' in rep.headers and 'json' in rep.headers['content-type']:
                if docs := rep.json():
                    try:
                        with open(name, 'w') as f:
                            f.write(json.dumps(docs))

                            _LOG.info(f'Cache file “{name}” written to disk.')

                    except FileNotFoundError:
                        _LOG.warning(f'Cache file “{name}” could not be written to disk.')

                    return docs

                return []

            elif rep.ok:  # Assuming BACEN returned 2XX with some HTML content.
                parser = _HtmlFilter()

                parser.feed(rep.text)
                parser.close()

                raise jurcore.BackendError(f'BACEN did not respond with a JSON object:\n\n{" ".join(parser.collected_text)}')

            else:
                rep.raise_for_status()

    @staticmethod
    @functools.cache  # This helper must return a list so it can be cached. Do not attempt to convert it to a generator.
    def _query_bacen(code: str, platform: 'platformdirs.api.PlatformDirsABC') -> typing.List[jurcore.MonthlyIndex]:
        '''Queries the monthly values of an index on the BACEN API.'''

        qry = {'formato': 'json', 'dataInicial': '01/01/2000', 'dataFinal': _TODAY().strftime('%d/%m/%Y')}
        url = _BACEN_API(f'/dados/serie/bcdata.sgs.{_SGS[code]}/dados').geturl()
        mem = []

        for x in LocalDirectoryProvider._retrieve_bacen_response(url, qry, platform, code):
            if 'valor' in x and x['valor'].strip():
                day = datetime.datetime.strptime(x['data'], '%d/%m/%Y').date()

                mem.append(jurcore.MonthlyIndex(period=jurcore.Period.from_date(day), value=decimal.Decimal(x['valor'])))

            else:
                _LOG.warning(f'Invalid entry in the BACEN {code} API response, “{x}”.')

        if not mem:
            raise jurcore.BackendError(f'the “LocalDirectoryProvider” provider was unable to retrieve any {code} indexes')

        return mem

    # This method must be a generator so it complies with the signature of "jurcore.IndexProvider.get_monthly_indexes".
    def get_monthly_indexes(self, code: str, begin: jurcore.Period, end: jurcore.Period) -> typing.Generator[jurcore.MonthlyIndex, None, None]:
        if code not in _SGS:
            raise jurcore.BackendError(f'the “LocalDirectoryProvider” provider cannot retrieve {code} indexes')

        for entry in self._query_bacen(code, self._platform):
            if begin <= entry.period <= end:
                yield entry

def _make_provider(source: str) -> jurcore.IndexProvider:
    '''Creates the index provider for a "fonte" argument.'''

    # The BACEN API is slow and unstable. Responses are saved to disk, so consecutive calls on the same day won't hit
    # the API again.
    if source == 'bacen':
        return LocalDirectoryProvider('jurcore')

    elif source == 'memoria':
        return jurcore.InMemoryProvider()

    raise ValueError(f'unsupported index source, "{source}"')

def _make_index(name: str) -> typing.Optional[jurcore.IndexRate]:
    return jurcore.IndexRate(name) if name and name != 'nenhum' else None  # pyright: ignore[reportArgumentType]

def _make_interest(value: str) -> typing.Optional[jurcore.RateSpec]:
    '''Interest comes as a monthly percentage, like "1", or as an index code, like "SELIC".'''

    if not value:
        return None

    elif value in typing.get_args(jurcore._INDEX):
        return jurcore.IndexRate(value)  # pyright: ignore[reportArgumentType]

    return jurcore.FixedRate(decimal.Decimal(value))

def _print_result(res: jurcore.Result, fmt: str) -> typing.Any:
    if fmt in tabulate.tabulate_formats:
        func = functools.partial(locale.currency, symbol=False, grouping=True)
        data = []

        tabulate.PRESERVE_WHITESPACE = True

        for x in res.ledger:
            out = []

            out.append(x.label)
            out.append(locale.str(round(x.rate * 100, 4)))  # pyright: ignore[reportArgumentType]
            out.append(locale.str(round(x.cf, 8)))  # pyright: ignore[reportArgumentType]
            out.append(func(x.corrected))
            out.append(locale.str(round(x.interest_rate * 100, 4)))  # pyright: ignore[reportArgumentType]
            out.append(func(x.gain))
            out.append(func(x.bal))

            data.append(out)

        _PR()
        _PR(tabulate.tabulate(data, tablefmt=fmt, **_LEDGER_OPTS))
        _PR()
        _PR(f'Principal..........: {func(res.principal)}')
        _PR(f'Factor.............: {locale.str(round(res.cf, 8))}')  # pyright: ignore[reportArgumentType]
        _PR(f'Corrected value....: {func(res.corrected)}')
        _PR(f'Correction.........: {func(res.correction)}')
        _PR(f'Interest...........: {func(res.interest)}')
        _PR(f'Total..............: {func(res.total)}')
        _PR(f'Generation.........: {datetime.datetime.now(_BRT).strftime("%d/%m/%Y %H:%M:%S")}')

    elif fmt == 'json':
        print(json.dumps(res.to_dict()))

    elif fmt == 'csv':
        dev = csv.DictWriter(sys.stdout, list(jurcore.LedgerEntry(period=jurcore.Period(2000, 1)).to_dict()))

        dev.writeheader()

        for x in res.ledger:
            dev.writerow(x.to_dict())

    elif fmt == 'raw':
        for x in res.ledger:
            print(x)

        print(res)

    else:
        _PR(f'Error, format "{fmt}" not supported.')

        return sh2py.HALT

def ajuda(command=''):
    '''
    Supported commands:

    - "corrige", corrects an amount by an index, with optional interest, and prints the calculation memory;
    - "liquida", settles a list of installments on a calculation date;
    - "fgts", accrues an FGTS balance;
    - "fatores", debugs the accumulated factor of an index.
    '''

    dic = globals()

    if command and command in dic and dic[command].__doc__ and command != 'ajuda':
        _PR(textwrap.dedent(dic[command].__doc__))

    else:
        _PR(textwrap.dedent(str(ajuda.__doc__)))

    return sh2py.HALT

def corrige(valor, indice, inicio, fim, **kwargs):
    '''
    Corrects an amount by an index, from the month of "inicio" through the month of "fim", and applies interest.

      jurcore corrige VALOR INDICE INICIO FIM [juros=1] [tipo_juros=simple] [inicio_juros=DATA] [formato=…] [fonte=memoria]

      • "indice", the correction index. Can be INPC, IPCA, IPCA-E, IGPM, INCC, TR, SELIC, CDI or "nenhum";

      • "juros", optional, the monthly interest rate, in percent, or an index code like SELIC;

      • "tipo_juros", the interest mode, simple or compound;

      • "inicio_juros", optional, the date interest starts to accrue;

      • "fonte", the index source, "memoria" (default) or "bacen";

      • "formato", the output format. Besides the formats supported by the Python Tabulate library, this routine
        supports "json", "csv" and "raw".

    Example, INPC correction with 1% a month of simple interest.

      jurcore corrige 10000 INPC 2023-01-10 2024-06-10 juros=1
    '''

    if kwargs.get('debug', '').lower() in _YES:
        logging.basicConfig(level=logging.DEBUG)

    # 0. Validate.
    if (mode := kwargs.get('tipo_juros', 'simple')) not in typing.get_args(jurcore._INTEREST_MODE):
        _PR(f'Error: interest mode "{mode}" not supported.')

        return sh2py.HALT

    # 1. Assemble the Jurcore call.
    kwa = {}

    try:
        kwa['index'] = _make_index(indice)
        kwa['interest'] = _make_interest(kwargs.get('juros', ''))
        kwa['mode'] = mode
        kwa['provider'] = _make_provider(kwargs.get('fonte', 'memoria'))

        if 'inicio_juros' in kwargs:
            kwa['interest_start'] = datetime.date.fromisoformat(kwargs['inicio_juros'])

        res = jurcore.compute(decimal.Decimal(valor), datetime.date.fromisoformat(inicio), datetime.date.fromisoformat(fim), **kwa)

    except (ValueError, decimal.InvalidOperation, jurcore.JurcoreError) as exc:
        _PR(f'Error: {exc}')

        return sh2py.HALT

    # 2. Format the results.
    return _print_result(res, kwargs.get('formato', 'fancy_outline'))

def liquida(data_calculo, csv_parcelas='', **kwargs):
    '''
    Settles a list of installments on a calculation date.

      jurcore liquida DATA_CALCULO [csv_parcelas=ARQUIVO] [indice=INPC] [juros=1] [tipo_juros=simple] [inicio_juros=DATA]
                      [honorarios=10] [custas=350] [multa=s] [formato=…] [fonte=memoria]

      • "csv_parcelas", the installments. Must be the path to a file in CSV format, with the columns "descricao",
        "valor", "vencimento", "correcao" and "juros". The last two are optional, and take "s" or "n". If this file is
        not provided, standard input will be read.

      • "indice", optional, the correction index;

      • "juros", optional, the monthly interest rate, in percent;

      • "tipo_juros", the interest mode, simple or compound;

      • "inicio_juros", optional, the date interest starts to accrue, e.g., the date of summons;

      • "honorarios", optional, attorney fees, in percent;

      • "custas", optional, court costs, a flat amount;

      • "multa", optional, applies the 10% fine of art. 523 of the CPC, after all other surcharges.
    '''

    if kwargs.get('debug', '').lower() in _YES:
        logging.basicConfig(level=logging.DEBUG)

    # 0. Validate.
    if (mode := kwargs.get('tipo_juros', 'simple')) not in typing.get_args(jurcore._INTEREST_MODE):
        _PR(f'Error: interest mode "{mode}" not supported.')

        return sh2py.HALT

    # 1. Assemble the Jurcore call.
    items = []
    kwa = {}

    try:
        with fileinput.input(files=[csv_parcelas] if csv_parcelas else ['-']) as fd:
            for row in csv.DictReader(fd):
                ent = jurcore.CashFlowItem(
                    label=row['descricao'],
                    amount=decimal.Decimal(row['valor']),
                    due_date=datetime.date.fromisoformat(row['vencimento']),
                    corrects=(row.get('correcao') or 's').lower() in _YES,
                    accrues_interest=(row.get('juros') or 's').lower() in _YES
                )

                items.append(ent)

        kwa['index'] = _make_index(kwargs.get('indice', ''))
        kwa['interest'] = _make_interest(kwargs.get('juros', ''))
        kwa['mode'] = mode
        kwa['provider'] = _make_provider(kwargs.get('fonte', 'memoria'))
        kwa['surcharges'] = []

        if 'inicio_juros' in kwargs:
            kwa['interest_start'] = datetime.date.fromisoformat(kwargs['inicio_juros'])

        if 'honorarios' in kwargs:
            kwa['surcharges'].append(jurcore.Surcharge.attorney_fees(decimal.Decimal(kwargs['honorarios'])))

        if 'custas' in kwargs:
            kwa['surcharges'].append(jurcore.Surcharge.court_costs(decimal.Decimal(kwargs['custas'])))

        if kwargs.get('multa', 'n').lower() in _YES:
            kwa['surcharges'].append(jurcore.Surcharge.enforcement_fine())

        res = jurcore.settle(items, datetime.date.fromisoformat(data_calculo), **kwa)

    except (KeyError, ValueError, decimal.InvalidOperation, jurcore.JurcoreError) as exc:
        _PR(f'Error: {exc}')

        return sh2py.HALT

    # 2. Format the results.
    if (fmt := kwargs.get('formato', 'fancy_outline')) in tabulate.tabulate_formats:
        func = functools.partial(locale.currency, symbol=False, grouping=True)
        data = []

        for x in res.items:
            data.append([x.item.label, x.item.due_date.strftime('%x'), func(x.result.principal), func(x.result.correction), func(x.result.interest), func(x.result.total)])

        _PR()
        _PR(tabulate.tabulate(data, tablefmt=fmt, **_SETTLEMENT_OPTS))
        _PR()
        _PR(f'Subtotal...........: {func(res.subtotal)}')

        for s in res.surcharges:
            _PR(f'{(s.surcharge.label + " ").ljust(19, ".")}: {func(s.value)}')

        _PR(f'Total..............: {func(res.total)}')

    elif fmt == 'json':
        print(json.dumps(res.to_dict()))

    elif fmt == 'csv':
        dev = csv.DictWriter(sys.stdout, ['period', 'corrected_value', 'interest', 'balance', 'items'])

        dev.writeheader()

        for x in res.aggregate_ledger():
            dev.writerow({'period': x.period.label, 'corrected_value': str(x.corrected), 'interest': str(x.gain), 'balance': str(x.bal), 'items': x.items})

    elif fmt == 'raw':
        print(res)

    else:
        _PR(f'Error, format "{fmt}" not supported.')

        return sh2py.HALT

def fgts(saldo, inicio, fim, deposito='0', **kwargs):
    '''
    Accrues an FGTS balance: TR correction, 3% a year of interest, and a monthly deposit.

      jurcore fgts SALDO INICIO FIM [deposito=VALOR] [formato=…] [fonte=memoria]

    Example.

      jurcore fgts 5000 2024-01-01 2024-12-31 deposito=240
    '''

    if kwargs.get('debug', '').lower() in _YES:
        logging.basicConfig(level=logging.DEBUG)

    try:
        res = jurcore.calculate_fgts(
            decimal.Decimal(saldo),
            datetime.date.fromisoformat(inicio),
            datetime.date.fromisoformat(fim),
            decimal.Decimal(deposito),
            _make_provider(kwargs.get('fonte', 'memoria'))
        )

    except (ValueError, decimal.InvalidOperation, jurcore.JurcoreError) as exc:
        _PR(f'Error: {exc}')

        return sh2py.HALT

    if (fmt := kwargs.get('formato', 'fancy_outline')) in tabulate.tabulate_formats:
        func = functools.partial(locale.currency, symbol=False, grouping=True)
        data = []

        for x in res.ledger:
            data.append([x.period.label, func(x.opening), locale.str(round(x.rate * 100, 4)), func(x.correction), func(x.gain), func(x.deposit), func(x.closing)])  # pyright: ignore[reportArgumentType]

        _PR()
        _PR(tabulate.tabulate(data, tablefmt=fmt, **_BALANCE_OPTS))
        _PR()
        _PR(f'Final balance......: {func(res.final)}')

    elif fmt == 'json':
        print(json.dumps(res.to_dict()))

    elif fmt == 'raw':
        for x in res.ledger:
            print(x)

    else:
        _PR(f'Error, format "{fmt}" not supported.')

        return sh2py.HALT

def fatores(indice, inicio, fim, indice_pct='100', fonte='memoria', debug='n'):
    '''
    Calculates the accumulated factor of an index.

    Used to facilitate debugging of indexes. Helps in creating test cases, building spreadsheets, and validating
    calculations in general.

      jurcore fatores INDICE INICIO FIM [indice_pct=100] [fonte=memoria] [debug=s]

    The "debug=s" argument will activate the "DEBUG" level in the "logging" module.
    '''

    if debug.lower() in _YES:
        logging.basicConfig(level=logging.DEBUG)

    try:
        d0 = jurcore.Period.from_date(datetime.date.fromisoformat(inicio))
        d1 = jurcore.Period.from_date(datetime.date.fromisoformat(fim))
        f_v = _make_provider(fonte).calculate_factor(indice, d0, d1, int(indice_pct))

    except (ValueError, jurcore.JurcoreError) as exc:
        _PR(f'Error: {exc}')

        return sh2py.HALT

    for x in f_v.mem:
        _PR(f'{x.period}...........: {locale.str(x.value)}%')  # pyright: ignore[reportArgumentType]

    _PR(f'Period.............: {d0} to {d1}')
    _PR(f'Factor.............: {locale.str(round(f_v.value, 10))}')  # pyright: ignore[reportArgumentType]
    _PR(f'Indexes............: {f_v.amount}')
    _PR(f'Generation.........: {datetime.datetime.now(_BRT).strftime("%d/%m/%Y %H:%M:%S")}')

if __name__ == '__main__':
    cli = sh2py.CommandLineMapper()

    cli.add(ajuda)
    cli.add(corrige)
    cli.add(liquida)
    cli.add(fgts)
    cli.add(fatores)

    locale.setlocale(locale.LC_ALL, 'pt_BR.UTF-8')

    if cli.run() is sh2py.HALT:
        exit(1)

# vi:fdm=marker:
