import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor

import sharedsession


def result_str(url: str, result: sharedsession.ExecuteResult) -> str:
    sep = '-------------------------'
    string = f'\n{sep}\nURL: {url}\nStatus: {result.status}\n'
    string += f'Completed: {result.completed_at.isoformat()}\n'
    for name, value in result.header_pairs():
        string += f'- {name}: {value}\n'

    string += f'Body bytes: {len(result.body)}\n{sep}'
    return string


def fetch(url: str, context_id: int) -> str:
    with sharedsession.SharedHandle(url, 'GET', context_id) as handle:
        handle.set_timeout(10_000)
        result = handle.execute(return_headers=True)
    return result_str(url, result)


def main() -> int:
    logging.basicConfig(level=os.environ.get('SHAREDSESSION_LOG', 'WARNING'))

    if len(sys.argv) < 2:
        urls = input('Enter one or more URLs to fetch: ').split()
    else:
        urls = sys.argv[1:]

    if bundle := os.environ.get('SHAREDSESSION_CA_BUNDLE'):
        sharedsession.set_certificate_bundle_path(bundle)

    exit_code = 0
    # every url shares context 0, so the fetches run one after another
    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(fetch, url, 0) for url in urls]
        for url, future in zip(urls, futures):
            try:
                print(future.result())
            except sharedsession.SessionError as exc:
                print(f'Error fetching {url}, check your network connection {exc}')
                exit_code = 1

    return exit_code


if __name__ == '__main__':
    sys.exit(main())
