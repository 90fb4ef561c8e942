#!/usr/bin/env python3
"""
Linux IPv4 neighbor table access via RTNetlink and a C helper built with CFFI

The helper dumps the kernel ARP cache (RTM_GETNEIGH, AF_INET) and serves it
through the same buffer contract as the Windows GetIpNetTable call:

- a too-small (or NULL) buffer fails with ERROR_INSUFFICIENT_BUFFER and the
  required size is written back through the size cell
- an empty cache answers ERROR_NO_DATA
- otherwise the buffer receives a little-endian row count followed by
  24-byte MIB_IPNETROW-layout rows

Neighbor states are folded onto the IP Helper row types:
- PERMANENT, NOARP                    -> static
- REACHABLE, STALE, DELAY, PROBE      -> dynamic
- INCOMPLETE, FAILED                  -> invalid
- anything else                       -> other

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - setuptools (required for Python 3.12+)
    - A C compiler and kernel headers (first use only)
"""

import sys
import logging

from cffi import FFI, VerificationError

from arpsweep.ipnet import (
    IpNetPlatform,
    PlatformLoadError,
    QueryResult,
    classify_status,
    status_name,
)

logger = logging.getLogger(__name__)

# C library source code - RTM_GETNEIGH dump packed as MIB_IPNETTABLE
C_SOURCE = r"""
#define _GNU_SOURCE
#include <stdio.h>
#include <stdlib.h>
#include <string.h>
#include <unistd.h>
#include <sys/socket.h>
#include <linux/netlink.h>
#include <linux/rtnetlink.h>
#include <linux/neighbour.h>
#include <arpa/inet.h>
#include <time.h>
#include <errno.h>

#if !defined(NETLINK_ROUTE) || !defined(RTM_GETNEIGH)
#error "Kernel headers too old - need Linux 2.6+ with rtnetlink support"
#endif

#define IPNET_NO_ERROR                  0x00
#define IPNET_ERROR_GEN_FAILURE         0x1F
#define IPNET_ERROR_NOT_SUPPORTED       0x32
#define IPNET_ERROR_INVALID_PARAMETER   0x57
#define IPNET_ERROR_INSUFFICIENT_BUFFER 0x7A
#define IPNET_ERROR_NO_DATA             0xE8

#define IPNET_MAXLEN_PHYSADDR 8
#define IPNET_HEADER_SIZE     4
#define IPNET_ROW_SIZE        24

#define IPNET_TYPE_OTHER   1
#define IPNET_TYPE_INVALID 2
#define IPNET_TYPE_DYNAMIC 3
#define IPNET_TYPE_STATIC  4

typedef struct {
    unsigned char* data;
    size_t length;
    size_t capacity;
    unsigned int seq;
} response_buffer_t;

typedef struct {
    unsigned int ifindex;
    unsigned int lladdr_len;
    unsigned char lladdr[IPNET_MAXLEN_PHYSADDR];
    unsigned char addr[4];
    unsigned int type;
} ipnet_row_t;

static int nl_create_socket(void) {
    int sock = socket(AF_NETLINK, SOCK_RAW | SOCK_CLOEXEC, NETLINK_ROUTE);
    if (sock < 0) {
        return -1;
    }

    struct sockaddr_nl addr;
    memset(&addr, 0, sizeof(addr));
    addr.nl_family = AF_NETLINK;

    if (bind(sock, (struct sockaddr*)&addr, sizeof(addr)) < 0) {
        close(sock);
        return -1;
    }

    int bufsize = 1024 * 1024;
    setsockopt(sock, SOL_SOCKET, SO_RCVBUF, &bufsize, sizeof(bufsize));

    return sock;
}

static unsigned int nl_generate_seq(void) {
    static int initialized = 0;
    if (!initialized) {
        srand(time(NULL) ^ getpid());
        initialized = 1;
    }
    return (unsigned int)rand();
}

static int nl_send_getneigh(int sock, unsigned int seq) {
    struct {
        struct nlmsghdr nlh;
        struct ndmsg ndm;
    } req;

    memset(&req, 0, sizeof(req));
    req.nlh.nlmsg_len = NLMSG_LENGTH(sizeof(struct ndmsg));
    req.nlh.nlmsg_type = RTM_GETNEIGH;
    req.nlh.nlmsg_flags = NLM_F_REQUEST | NLM_F_DUMP;
    req.nlh.nlmsg_seq = seq;
    req.ndm.ndm_family = AF_INET;

    ssize_t sent = send(sock, &req, req.nlh.nlmsg_len, 0);
    return (sent == (ssize_t)req.nlh.nlmsg_len) ? 0 : -1;
}

static void nl_free_response(response_buffer_t* resp) {
    if (resp) {
        free(resp->data);
        free(resp);
    }
}

static response_buffer_t* nl_recv_response(int sock, unsigned int expected_seq) {
    response_buffer_t* resp = calloc(1, sizeof(response_buffer_t));
    if (!resp) return NULL;

    resp->capacity = 8192;
    resp->data = malloc(resp->capacity);
    resp->seq = expected_seq;
    if (!resp->data) {
        free(resp);
        return NULL;
    }

    int done = 0;
    while (!done) {
        unsigned char buf[8192];
        ssize_t len = recv(sock, buf, sizeof(buf), 0);

        if (len < 0) {
            if (errno == EINTR) continue;
            nl_free_response(resp);
            return NULL;
        }
        if (len == 0) break;

        if (resp->length + len > resp->capacity) {
            size_t new_capacity = resp->capacity * 2;
            while (new_capacity < resp->length + len) {
                new_capacity *= 2;
            }
            unsigned char* new_data = realloc(resp->data, new_capacity);
            if (!new_data) {
                nl_free_response(resp);
                return NULL;
            }
            resp->data = new_data;
            resp->capacity = new_capacity;
        }

        memcpy(resp->data + resp->length, buf, len);
        resp->length += len;

        struct nlmsghdr* nlh = (struct nlmsghdr*)buf;
        int remaining = (int)len;
        for (; NLMSG_OK(nlh, remaining); nlh = NLMSG_NEXT(nlh, remaining)) {
            if (nlh->nlmsg_seq != expected_seq) continue;
            if (nlh->nlmsg_type == NLMSG_DONE) {
                done = 1;
                break;
            }
            if (nlh->nlmsg_type == NLMSG_ERROR) {
                nl_free_response(resp);
                return NULL;
            }
        }
    }

    return resp;
}

static unsigned int nud_to_type(unsigned short state) {
    if (state & (NUD_PERMANENT | NUD_NOARP)) return IPNET_TYPE_STATIC;
    if (state & (NUD_REACHABLE | NUD_STALE | NUD_DELAY | NUD_PROBE)) return IPNET_TYPE_DYNAMIC;
    if (state & (NUD_INCOMPLETE | NUD_FAILED)) return IPNET_TYPE_INVALID;
    return IPNET_TYPE_OTHER;
}

// Returns the row count, or -1 on allocation failure
static int collect_rows(response_buffer_t* resp, ipnet_row_t** rows_out) {
    int count = 0;
    int capacity = 0;
    ipnet_row_t* rows = NULL;

    struct nlmsghdr* nlh = (struct nlmsghdr*)resp->data;
    int remaining = (int)resp->length;

    for (; NLMSG_OK(nlh, remaining); nlh = NLMSG_NEXT(nlh, remaining)) {
        if (nlh->nlmsg_seq != resp->seq) continue;
        if (nlh->nlmsg_type == NLMSG_DONE || nlh->nlmsg_type == NLMSG_ERROR) break;
        if (nlh->nlmsg_type != RTM_NEWNEIGH) continue;

        struct ndmsg* ndm = NLMSG_DATA(nlh);
        if (ndm->ndm_family != AF_INET) continue;

        ipnet_row_t row;
        memset(&row, 0, sizeof(row));
        row.ifindex = (unsigned int)ndm->ndm_ifindex;
        row.type = nud_to_type(ndm->ndm_state);

        int has_dst = 0;
        struct rtattr* rta = (struct rtattr*)((char*)ndm + NLMSG_ALIGN(sizeof(struct ndmsg)));
        int rtalen = nlh->nlmsg_len - NLMSG_SPACE(sizeof(struct ndmsg));

        for (; RTA_OK(rta, rtalen); rta = RTA_NEXT(rta, rtalen)) {
            switch (rta->rta_type) {
                case NDA_DST:
                    if (RTA_PAYLOAD(rta) >= 4) {
                        memcpy(row.addr, RTA_DATA(rta), 4);
                        has_dst = 1;
                    }
                    break;

                case NDA_LLADDR:
                    // Longer hardware addresses do not fit the row
                    if (RTA_PAYLOAD(rta) <= IPNET_MAXLEN_PHYSADDR) {
                        row.lladdr_len = RTA_PAYLOAD(rta);
                        memcpy(row.lladdr, RTA_DATA(rta), row.lladdr_len);
                    }
                    break;

                default:
                    break;
            }
        }

        if (!has_dst) continue;

        if (count == capacity) {
            int new_capacity = capacity ? capacity * 2 : 64;
            ipnet_row_t* new_rows = realloc(rows, new_capacity * sizeof(ipnet_row_t));
            if (!new_rows) {
                free(rows);
                return -1;
            }
            rows = new_rows;
            capacity = new_capacity;
        }
        rows[count++] = row;
    }

    *rows_out = rows;
    return count;
}

static int compare_rows(const void* a, const void* b) {
    unsigned int addr_a, addr_b;
    memcpy(&addr_a, ((const ipnet_row_t*)a)->addr, 4);
    memcpy(&addr_b, ((const ipnet_row_t*)b)->addr, 4);
    addr_a = ntohl(addr_a);
    addr_b = ntohl(addr_b);
    if (addr_a < addr_b) return -1;
    if (addr_a > addr_b) return 1;
    return 0;
}

static void put_le32(unsigned char* p, unsigned int value) {
    p[0] = value & 0xFF;
    p[1] = (value >> 8) & 0xFF;
    p[2] = (value >> 16) & 0xFF;
    p[3] = (value >> 24) & 0xFF;
}

unsigned long ipnet_get_table(unsigned char* buf, unsigned long* size, int order) {
    if (!size) return IPNET_ERROR_INVALID_PARAMETER;

    int sock = nl_create_socket();
    if (sock < 0) return IPNET_ERROR_NOT_SUPPORTED;

    unsigned int seq = nl_generate_seq();
    if (nl_send_getneigh(sock, seq) < 0) {
        close(sock);
        return IPNET_ERROR_GEN_FAILURE;
    }

    response_buffer_t* resp = nl_recv_response(sock, seq);
    close(sock);
    if (!resp) return IPNET_ERROR_GEN_FAILURE;

    ipnet_row_t* rows = NULL;
    int count = collect_rows(resp, &rows);
    nl_free_response(resp);
    if (count < 0) return IPNET_ERROR_GEN_FAILURE;

    unsigned long required = IPNET_HEADER_SIZE + (unsigned long)count * IPNET_ROW_SIZE;
    if (buf == NULL || *size < required) {
        *size = required;
        free(rows);
        return IPNET_ERROR_INSUFFICIENT_BUFFER;
    }

    put_le32(buf, (unsigned int)count);
    if (count == 0) {
        free(rows);
        return IPNET_ERROR_NO_DATA;
    }

    if (order) {
        qsort(rows, count, sizeof(ipnet_row_t), compare_rows);
    }

    for (int i = 0; i < count; i++) {
        unsigned char* p = buf + IPNET_HEADER_SIZE + (size_t)i * IPNET_ROW_SIZE;
        put_le32(p, rows[i].ifindex);
        put_le32(p + 4, rows[i].lladdr_len);
        memset(p + 8, 0, IPNET_MAXLEN_PHYSADDR);
        memcpy(p + 8, rows[i].lladdr, rows[i].lladdr_len);
        memcpy(p + 16, rows[i].addr, 4);
        put_le32(p + 20, rows[i].type);
    }

    free(rows);
    return IPNET_NO_ERROR;
}
"""

# FFI C definitions
ffi = FFI()
ffi.cdef("""
    unsigned long ipnet_get_table(unsigned char* buf, unsigned long* size, int order);
""")


def _check_build_requirements():
    # For Python 3.12+, verify setuptools is available
    if sys.version_info >= (3, 12):
        try:
            import setuptools  # noqa
        except ImportError:
            raise PlatformLoadError(
                "Python 3.12+ requires setuptools for CFFI. "
                "Install it with: pip install setuptools"
            )


class LinuxIpNetPlatform(IpNetPlatform):
    """RTNetlink neighbor dump served as an IP Helper style table"""

    name = 'linux'

    def _open_library(self):
        _check_build_requirements()
        try:
            lib = ffi.verify(C_SOURCE, extra_compile_args=['-std=c99'])
        except (VerificationError, OSError) as e:
            raise PlatformLoadError(f"Failed to build netlink helper: {e}") from e
        logger.debug("Built netlink neighbor helper")
        return lib

    def _query(self, size: int, order: bool) -> QueryResult:
        size_ptr = ffi.new("unsigned long*", size)
        if size:
            buf = ffi.new("unsigned char[]", size)
        else:
            buf = ffi.NULL

        status = self._lib.ipnet_get_table(buf, size_ptr, 1 if order else 0)
        logger.debug("ipnet_get_table(size=%d) -> %s, size=%d",
                     size, status_name(status), size_ptr[0])

        data = ffi.buffer(buf, size)[:] if size else b''
        return classify_status(status, size_ptr[0], data)
