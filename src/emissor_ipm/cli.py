from __future__ import annotations

import argparse
import logging
import os
import sys
from importlib.resources import files
from pathlib import Path

TEMPLATES = [
    "tax.yaml.example",
    "service_types.yaml.example",
    "municipalities.csv.example",
    "invoice.yaml.example",
]


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _init_config() -> None:
    """Copy bundled config templates to the user's config/data directories."""
    from emissor_ipm.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    templates = files("emissor_ipm") / "templates"

    config_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    copied = 0
    for rel in TEMPLATES:
        dest = config_dir / rel
        if dest.exists():
            print(f"  já existe: {dest}")
            continue
        with (templates / rel).open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  criado: {dest}")
        copied += 1

    print()
    print(f"Configuração: {config_dir}")
    print(f"Dados:   {data_dir}")
    print()
    if copied:
        print("Próximos passos:")
        print("  1. Renomeie tax.yaml.example, service_types.yaml.example e")
        print("     municipalities.csv.example removendo o sufixo .example")
        print("  2. Ajuste as alíquotas IBS/CBS/PIS/COFINS em tax.yaml")
        print("  3. Execute: emissor-ipm build invoice.yaml.example --test")
    else:
        print("Nenhum arquivo novo criado (todos já existiam).")


def _preflight() -> bool:
    """Verify tax.yaml exists before building. Auto-creates the data directory."""
    from emissor_ipm.config import get_config_dir, get_data_dir

    get_data_dir().mkdir(parents=True, exist_ok=True)

    config_dir = get_config_dir()
    if not config_dir.is_dir():
        print(f"Erro: diretório de configuração não encontrado: {config_dir}")
        print("Execute 'emissor-ipm init' para criar os arquivos de exemplo.")
        return False
    if not (config_dir / "tax.yaml").is_file():
        print(f"Erro: tax.yaml não encontrado em {config_dir}")
        print("Execute 'emissor-ipm init' e configure as alíquotas.")
        return False
    return True


def _cmd_build(args: argparse.Namespace) -> int:
    from emissor_ipm.services.emission import load_invoice, prepare

    prepared = prepare(load_invoice(Path(args.invoice)), test_mode=args.test)
    if args.out:
        Path(args.out).write_bytes(prepared.xml)
        print(f"XML gravado em {args.out}")
    else:
        sys.stdout.write(prepared.xml.decode("utf-8") + "\n")
    return 0


def _cmd_emit(args: argparse.Namespace) -> int:
    from emissor_ipm.services.emission import load_invoice, prepare, save_xml, submit
    from emissor_ipm.utils.formatters import format_brl

    invoice = load_invoice(Path(args.invoice))
    prepared = prepare(invoice, test_mode=args.test)
    print(f"Nota {invoice.id.hex}: {format_brl(invoice.amount)}")

    if args.dry_run:
        print(f"XML salvo (sem envio): {save_xml(prepared)}")
        return 0

    result = submit(prepared)
    print(f"NFS-e emitida: {result.invoice_number}")
    if result.verification_code:
        print(f"Código verificador: {result.verification_code}")
    if result.pdf_url:
        print(f"PDF: {result.pdf_url}")
    return 0


def _cmd_municipalities(args: argparse.Namespace) -> int:
    from emissor_ipm.config import get_municipalities_path
    from emissor_ipm.utils.municipalities import build_municipality_table

    out = Path(args.out) if args.out else get_municipalities_path()
    stats = build_municipality_table(Path(args.tom_csv), Path(args.ibge_json), out)
    print(f"Gravado {out}. Total: {stats.total}, com IBGE: {stats.matched}, sem IBGE: {stats.unmatched}")
    return 0


def _cmd_service_types(args: argparse.Namespace) -> int:
    from emissor_ipm.config import get_service_types_path
    from emissor_ipm.utils.reference_data import ServiceTypeMappings

    path = get_service_types_path()
    active = ServiceTypeMappings.from_yaml(path).list_active()
    if not active:
        print(f"Nenhum tipo de serviço ativo em {path}")
        return 0
    for m in active:
        print(f"{m.service_type_key}  CNAE {m.cnae_code or '-'}  NBS {m.nbs_code}  {m.description}")
    return 0


def _format_municipality(m) -> str:
    return f"{m.tom_code}  {m.ibge_code or '-':>7}  {m.name}/{m.uf}"


def _cmd_municipality(args: argparse.Namespace) -> int:
    from emissor_ipm.config import get_municipalities_path
    from emissor_ipm.utils.reference_data import MunicipalityTable

    table = MunicipalityTable.from_csv(get_municipalities_path())
    if args.uf:
        found = table.list_by_uf(args.uf)
        for m in found:
            print(_format_municipality(m))
        print(f"{len(found)} de {len(table)} municípios na tabela")
        return 0

    m = table.get_by_ibge_code(args.ibge) if args.ibge else table.get_by_tom_code(args.tom)
    if m is None:
        print(f"Município não encontrado: {args.ibge or args.tom}")
        return 1
    print(_format_municipality(m))
    return 0


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="emissor-ipm", description="Emissor de NFS-e IPM")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="cria arquivos de configuração de exemplo")

    build = sub.add_parser("build", help="gera o XML da nota sem enviar")
    build.add_argument("invoice", help="arquivo YAML/JSON da nota")
    build.add_argument("--test", action="store_true", help="inclui <nfse_teste>")
    build.add_argument("--out", help="grava o XML neste arquivo")

    emit = sub.add_parser("emit", help="gera e envia a nota ao IPM")
    emit.add_argument("invoice", help="arquivo YAML/JSON da nota")
    emit.add_argument("--test", action="store_true", help="inclui <nfse_teste>")
    emit.add_argument("--dry-run", action="store_true", help="apenas grava o XML")

    mun = sub.add_parser("municipalities", help="gera municipalities.csv (IBGE x TOM)")
    mun.add_argument("--tom-csv", required=True)
    mun.add_argument("--ibge-json", required=True)
    mun.add_argument("--out")

    sub.add_parser("service-types", help="lista os tipos de serviço ativos")

    lookup = sub.add_parser("municipality", help="consulta a tabela de municípios")
    key = lookup.add_mutually_exclusive_group(required=True)
    key.add_argument("--uf", help="lista os municípios da UF")
    key.add_argument("--ibge", help="código IBGE (7 dígitos)")
    key.add_argument("--tom", help="código TOM (4 dígitos)")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the emissor-ipm CLI."""
    args = _parser().parse_args(argv)
    _configure_logging()

    if args.command == "init":
        _init_config()
        return
    if args.command == "municipalities":
        sys.exit(_cmd_municipalities(args))

    if args.command in ("build", "emit") and not _preflight():
        sys.exit(1)

    from emissor_ipm.services.exceptions import (
        ConfigurationError,
        GatewayRejectError,
        InvalidInvoiceData,
    )

    handlers = {
        "build": _cmd_build,
        "emit": _cmd_emit,
        "service-types": _cmd_service_types,
        "municipality": _cmd_municipality,
    }
    try:
        sys.exit(handlers[args.command](args))
    except InvalidInvoiceData as exc:
        print(f"Erro: nota inválida: {exc}")
    except ConfigurationError as exc:
        print(f"Erro de configuração: {exc}")
    except GatewayRejectError as exc:
        print(f"NFS-e rejeitada: {exc}")
    sys.exit(1)


if __name__ == "__main__":
    main()
