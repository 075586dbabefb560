import logging
import sys

import click

from tdsp_errors import LexError, NoRowMatched, TableBuildError
from tdsp_lexer import Lexer, get_line, token_str, tokenize
from tdsp_table import default_table, load_table

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())


def assemble_line(text: str, table=None) -> list[int]:
    # Одна строка исходника -> одно или два 16-битных слова
    if table is None:
        table = default_table()
    words = table.lookup(tokenize(text))
    if words is None:
        raise NoRowMatched(f"нет подходящей команды: {text.strip()}")
    return words


def assemble(text: str, table) -> list[dict]:
    # Каждая непустая строка даёт запись:
    # line  номер строки
    # src   текст строки
    # tokens токены (пусто, если лексер не справился)
    # words слова команды или None
    # error текст ошибки или None
    # Ошибка в строке не останавливает разбор остальных.
    lines = text.splitlines()
    lexer = Lexer(text)
    prog = []
    n = 0
    while not lexer.at_eof:
        n += 1
        src = lines[n - 1].strip() if n <= len(lines) else ""
        ins = {"line": n, "src": src, "tokens": [], "words": None, "error": None}
        try:
            ins["tokens"] = get_line(lexer)
        except LexError as e:
            ins["error"] = e.message
            prog.append(ins)
            continue
        if not ins["tokens"]:
            continue
        ins["words"] = table.lookup(ins["tokens"])
        if ins["words"] is None:
            ins["error"] = "нет подходящей команды"
        prog.append(ins)
    return prog


def show_tokens(ins):
    click.echo(f"{ins['line']}: {ins['src']}")
    for tok in ins["tokens"]:
        click.echo("    " + token_str(tok))


@click.command()
@click.argument("src", type=click.File("r", encoding="utf-8"), default="-")
@click.option("--table", "table_path", type=click.Path(exists=True, dir_okay=False),
              envvar="TDSP_TABLE", help="файл таблицы команд вместо встроенной")
@click.option("--out", type=click.Path(dir_okay=False), help="записать слова в двоичный файл")
@click.option("--tokens", is_flag=True, help="печатать токены каждой строки")
@click.option("-v", "--verbose", is_flag=True, help="отладочный журнал")
def main(src, table_path, out, tokens, verbose):
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s", stream=sys.stderr)

    try:
        table = load_table(table_path) if table_path else default_table()
    except TableBuildError as e:
        raise click.ClickException(f"таблица команд: {e}")

    prog = assemble(src.read(), table)
    failed = False
    for ins in prog:
        if tokens:
            show_tokens(ins)
        if ins["error"]:
            failed = True
            click.echo(f"строка {ins['line']}: {ins['error']}: {ins['src']}", err=True)
            continue
        for w in ins["words"]:
            click.echo(f"{w:04x}")

    if out:
        # Слова little-endian подряд
        data = bytearray()
        for ins in prog:
            for w in ins["words"] or []:
                data.extend(w.to_bytes(2, "little"))
        with open(out, "wb") as f:
            f.write(data)
        log.info("записано %d байт в %s", len(data), out)

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
